"""Automation rules for the task board: schedules, filters, actions and history."""
