"""Terminal front end: event rendering and permission prompts."""
