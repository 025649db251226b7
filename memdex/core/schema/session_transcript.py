"""Session transcript schemas.

Transcripts are persisted as camelCase JSON, one file per session key.
"""

from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ROLE_LABELS = {
    "user": "User",
    "assistant": "Assistant",
    "system": "System",
    "tool": "Tool",
}


class TranscriptEntry(BaseModel):
    """A single message in a session transcript."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    role: str = Field(..., description="Speaker role: user, assistant, system or tool")
    content: str = Field(default="", description="Message text")
    timestamp: datetime = Field(default_factory=datetime.now, description="When the message was recorded")
    token_count: int | None = Field(default=None, description="Token count reported by the model")
    tool_calls: list[dict] | None = Field(default=None, description="Tool calls issued by the message")


class SessionSummary(BaseModel):
    """Listing view of a stored session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_key: str
    title: str | None = None
    started_at: datetime
    ended_at: datetime | None = None
    message_count: int = 0
    summary: str | None = None


class SessionTranscript(BaseModel):
    """A conversation transcript."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_key: str = Field(..., description="Unique session key")
    title: str | None = Field(default=None, description="Human readable title")
    summary: str | None = Field(default=None, description="Short summary of the conversation")
    started_at: datetime = Field(default_factory=datetime.now, description="Session start time")
    ended_at: datetime | None = Field(default=None, description="Session end time")
    entries: list[TranscriptEntry] = Field(default_factory=list, description="Messages in order")
    metadata: dict[str, str] = Field(default_factory=dict, description="Free-form string metadata")

    @property
    def message_count(self) -> int:
        return len(self.entries)

    @property
    def duration(self) -> timedelta | None:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    def add_entry(self, role: str, content: str, token_count: int | None = None) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, content=content, token_count=token_count)
        self.entries.append(entry)
        return entry

    def add_user_message(self, content: str) -> TranscriptEntry:
        return self.add_entry("user", content)

    def add_assistant_message(self, content: str, token_count: int | None = None) -> TranscriptEntry:
        return self.add_entry("assistant", content, token_count)

    def add_system_message(self, content: str) -> TranscriptEntry:
        return self.add_entry("system", content)

    def end(self) -> None:
        """Mark the session as ended now."""
        self.ended_at = datetime.now()

    def to_summary(self) -> SessionSummary:
        return SessionSummary(
            session_key=self.session_key,
            title=self.title,
            started_at=self.started_at,
            ended_at=self.ended_at,
            message_count=self.message_count,
            summary=self.summary,
        )

    def to_plain_text(self) -> str:
        """Render the transcript as markdown-flavoured plain text.

        This rendering is what gets chunked and indexed, so line numbers in
        search results for sessions point into this text.
        """
        lines: list[str] = []
        if self.title:
            lines.append(f"# {self.title}")
            lines.append("")

        lines.append(f"Session: {self.session_key}")
        lines.append(f"Started: {self.started_at:%Y-%m-%d %H:%M:%S}")
        if self.ended_at is not None:
            lines.append(f"Ended: {self.ended_at:%Y-%m-%d %H:%M:%S}")
        if self.summary:
            lines.append(f"Summary: {self.summary}")
        lines.append("")

        for entry in self.entries:
            role = ROLE_LABELS.get(entry.role, entry.role)
            lines.append(f"**{role}** ({entry.timestamp:%H:%M:%S}):")
            lines.extend(entry.content.split("\n"))
            lines.append("")

        return "\n".join(lines)
