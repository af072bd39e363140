"""Agent Fleet - supervise many Claude Code sessions from one place.

Hook notifications written by each session are turned into a per-directory
runtime status (idle, running, stuck, complete); stuck and complete sessions
raise prompts, and one session at a time can be focused in the workspace.
"""

__version__ = "0.1.0"
