"""CrimeDesk package initializer.

Keeps imports like `from crimedesk.nlp_processor import parse_voice_command`
working when running `python -m crimedesk.api`. Contains no runtime side effects.
"""

__all__ = []
