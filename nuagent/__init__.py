"""nuagent - a language model agent that works by running validated Nushell scripts."""

__version__ = "0.1.0"
