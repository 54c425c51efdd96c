"""Core models and the folder comparison engine."""
