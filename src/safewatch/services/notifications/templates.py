"""
Alert message templates shared by the notification channels
"""

import html
from typing import Optional

from safewatch.models.safety import AlertPayload, SOSAlert, TriggerSource


SUBJECT_TEMPLATE = "🚨 DANGER! SOS Alert from {name} - Immediate Help Needed"

_TRIGGER_LABELS = {
    TriggerSource.MANUAL: "SOS button",
    TriggerSource.VOICE: "voice command",
    TriggerSource.AI: "automatic safety detection",
}


def build_subject(alert: SOSAlert) -> str:
    return SUBJECT_TEMPLATE.format(name=alert.user_name)


def describe_location(alert: SOSAlert) -> str:
    if alert.location is None:
        return "Location unavailable"
    return alert.location.describe()


def describe_battery(level: Optional[int]) -> str:
    return f"{level}%" if level is not None else "Unknown"


def describe_network(alert: SOSAlert) -> str:
    if alert.network_type is None and alert.is_connected is None:
        return "Unknown"
    network = alert.network_type or "unknown"
    if alert.is_connected is False:
        return f"{network} (disconnected)"
    return network


def audio_note(payload: AlertPayload) -> str:
    if payload.segment and payload.segment.has_audio:
        return f"Audio recording #{payload.segment.sequence} is attached."
    if payload.segment:
        return f"Update #{payload.segment.sequence}: no audio available for this update."
    return "Audio recordings will follow every minute while the alert is active."


def build_text(payload: AlertPayload) -> str:
    """Plain text body, also used as the WhatsApp message"""
    alert = payload.alert
    lines = [
        f"🚨 EMERGENCY ALERT from {alert.user_name}",
        "",
        f"{alert.user_name} may be in danger and needs immediate help.",
        f"Triggered by: {_TRIGGER_LABELS.get(alert.alert_type, alert.alert_type.value)}",
        f"Time: {alert.triggered_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        "",
        f"📍 Location: {describe_location(alert)}",
    ]
    if alert.location is not None:
        lines.append(f"🗺️ Map: {alert.location.maps_url}")
    lines.extend([
        f"🔋 Battery: {describe_battery(alert.battery_level)}",
        f"📶 Network: {describe_network(alert)}",
        "",
        audio_note(payload),
        "",
        "Please try to contact them immediately. If you cannot reach them, "
        "call your local emergency services.",
    ])
    return "\n".join(lines)


def build_html(payload: AlertPayload) -> str:
    alert = payload.alert
    name = html.escape(alert.user_name)
    location = html.escape(describe_location(alert))
    map_link = ""
    if alert.location is not None:
        url = html.escape(alert.location.maps_url)
        map_link = f'<p><a href="{url}">Open location in Google Maps</a></p>'

    return f"""<html>
  <body style="font-family: Arial, sans-serif;">
    <h2 style="color: #c62828;">🚨 DANGER! SOS Alert from {name}</h2>
    <p><strong>{name}</strong> may be in danger and needs immediate help.</p>
    <table>
      <tr><td><strong>Location</strong></td><td>{location}</td></tr>
      <tr><td><strong>Battery</strong></td><td>{html.escape(describe_battery(alert.battery_level))}</td></tr>
      <tr><td><strong>Network</strong></td><td>{html.escape(describe_network(alert))}</td></tr>
      <tr><td><strong>Time</strong></td><td>{alert.triggered_at.isoformat()}</td></tr>
    </table>
    {map_link}
    <p>{html.escape(audio_note(payload))}</p>
    <p style="color: #c62828;"><strong>Please try to contact them immediately. If you cannot
    reach them, call your local emergency services.</strong></p>
  </body>
</html>"""
