from crimedesk.voice import TranscriptEvent, handle_transcript


def test_interim_transcripts_are_not_interpreted():
    assert handle_transcript(TranscriptEvent("show me all", is_final=False)) is None
    assert handle_transcript(TranscriptEvent("   ")) is None


def test_confident_command_is_read_back_as_search():
    result = handle_transcript(TranscriptEvent("show me all armed robberies this month"))
    assert result.summary == "Crime: armed robbery, robbery | Time: this month"
    assert result.reply.text == "Searching for Crime: armed robbery, robbery | Time: this month"
    assert result.reply.rate == 1.1


def test_unclear_command_speaks_the_question():
    result = handle_transcript(TranscriptEvent("hello"))
    assert result.parsed.needs_clarification
    assert result.reply.text == result.parsed.clarification_question
    assert result.reply.rate == 1.0
    body = result.to_dict()
    assert body['speak'] == {'text': result.reply.text, 'rate': 1.0, 'pitch': 1.0, 'volume': 1.0}
    assert body['summary'] == 'General search'
