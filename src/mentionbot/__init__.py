"""WhatsApp bot that mentions whole groups or saved subgroups on command."""

__version__ = "0.1.0"
