"""Run statistics and chat notifications."""
