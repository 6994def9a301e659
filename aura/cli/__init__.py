"""Terminal front-end — the click command group and the interactive chat."""
