from tortoise import fields
from tortoise.models import Model

from felis.utils.enums import SessionOrigin


class ExperimentSession(Model):
    """
    One experiment run. Creation-time fields are written once;
    afterwards only client_end_time (once) and the event sequence change.
    """
    id = fields.UUIDField(primary_key=True)
    origin = fields.CharEnumField(SessionOrigin, max_length=16, default=SessionOrigin.INCREMENTAL)

    setup_info = fields.TextField(default="")
    user_agent = fields.TextField(default="")
    device = fields.JSONField(null=True)
    location = fields.JSONField(null=True)
    label = fields.TextField(null=True)
    machine_name = fields.TextField(null=True)

    client_start_time = fields.DatetimeField()
    client_end_time = fields.DatetimeField(null=True)

    # stamped by the server, never by the client
    received_at = fields.DatetimeField()
    ip_address = fields.CharField(max_length=64, null=True)

    event_count = fields.IntField(default=0)

    class Meta:
        table = "experiment_session"


class SessionEvent(Model):
    """
    Append-only. seq is the position inside the session and is
    assigned under the session row lock.
    """
    id = fields.BigIntField(primary_key=True)
    session = fields.ForeignKeyField(
        "models.ExperimentSession", related_name="events", on_delete=fields.CASCADE
    )
    seq = fields.IntField()
    timestamp = fields.BigIntField()
    event_type = fields.TextField()
    # JSON text, decoded by the store; the payload is never interpreted
    data = fields.TextField()

    class Meta:
        table = "session_event"
        unique_together = (("session", "seq"),)
