"""Contacts to be dialed."""
