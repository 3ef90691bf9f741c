"""Glue between a speech front end and the command interpreter.

Speech recognition and synthesis live in the client. The client posts
transcript events here and receives a `SpeechReply` it can hand straight to
its synthesis engine. Only final transcripts are interpreted.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

from crimedesk.nlp_processor import ParsedCommand, format_command_summary, parse_voice_command


@dataclass(frozen=True)
class TranscriptEvent:
    transcript: str
    is_final: bool = True


@dataclass(frozen=True)
class SpeechReply:
    text: str
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {'text': self.text, 'rate': self.rate, 'pitch': self.pitch, 'volume': self.volume}


@dataclass(frozen=True)
class VoiceResponse:
    parsed: ParsedCommand
    summary: str
    reply: SpeechReply

    def to_dict(self) -> Dict[str, Any]:
        return {
            'parsed': self.parsed.to_dict(),
            'summary': self.summary,
            'speak': self.reply.to_dict(),
        }


def build_reply(parsed: ParsedCommand, summary: str) -> SpeechReply:
    if parsed.needs_clarification and parsed.clarification_question:
        return SpeechReply(parsed.clarification_question, rate=1.0)
    return SpeechReply(f"Searching for {summary}", rate=1.1)


def handle_transcript(event: TranscriptEvent) -> Optional[VoiceResponse]:
    """Interpret a final transcript; interim or blank ones return None."""
    if not event.is_final or not event.transcript.strip():
        return None
    parsed = parse_voice_command(event.transcript)
    summary = format_command_summary(parsed)
    return VoiceResponse(parsed=parsed, summary=summary, reply=build_reply(parsed, summary))
