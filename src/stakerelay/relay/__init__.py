"""Authorization-and-relay pipeline for gasless stake requests.

Stages: validation -> authentication -> replay guard -> submission.
"""
