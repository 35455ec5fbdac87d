"""Face recognizer: deduplicated face identity registry for image trees."""

__version__ = "0.1.0"
