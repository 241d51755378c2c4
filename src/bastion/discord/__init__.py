"""Discord integration for Bastion: the bot, its slash commands, and the
gateway adapter the call engine uses to create, lock and delete channels."""
