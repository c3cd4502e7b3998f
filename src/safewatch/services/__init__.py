"""SafeWatch services"""
