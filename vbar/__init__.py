"""vbar: a scriptable status bar driven over a Unix control socket."""

__version__ = "1.0.0"
