"""Runtime helpers shared by the bot modules."""
