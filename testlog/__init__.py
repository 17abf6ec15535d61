"""testlog - media sync, composition and storage integrity for pull-test records."""

__version__ = "0.1.0"
