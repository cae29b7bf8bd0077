"""AI helpers: summary providers and prompts"""
