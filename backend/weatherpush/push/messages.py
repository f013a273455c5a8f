import json
from dataclasses import asdict, dataclass

WEATHER_TAG = "weather"


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    body: str
    tag: str = WEATHER_TAG
    url: str = "/"

    def to_payload(self, payload_format: str = "text") -> bytes:
        """Serialize for encryption.

        The bundled service worker shows ``event.data.text()`` as the
        notification body, so the default wire format is just the body.
        """
        if payload_format == "json":
            return json.dumps(asdict(self), ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        if payload_format == "text":
            return self.body.encode("utf-8")
        raise ValueError(f"Unknown payload format: {payload_format!r}")


WELCOME_MESSAGE = NotificationMessage(title="Weather", body="Notifications enabled!")


def summary_message() -> NotificationMessage:
    # Weather data comes from outside this service; the summary text is fixed here.
    return NotificationMessage(
        title="Weather",
        body="Daily weather summary is ready. Tap to see today's forecast.",
    )
