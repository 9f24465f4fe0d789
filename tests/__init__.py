"""Test package for the audio n-back trainer.

Core tests drive the trial engine in virtual time through a fake clock, so a
full block runs instantly. The pygame smoke tests use SDL's dummy video and
audio drivers to avoid opening real windows. Run ``pytest`` from the project
root.
"""
