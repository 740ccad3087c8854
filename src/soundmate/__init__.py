"""SoundMate - crowd-sourced music map aggregated on an H3 grid."""

__version__ = "0.1.0"
