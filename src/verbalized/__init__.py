"""verbalized: record speech, transcribe it and stream a refined rewrite."""

__version__ = "0.1.0"
