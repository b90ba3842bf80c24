"""UI module - system tray, dialogs and display helpers.

The tray and dialogs import pystray/tkinter, so they are imported from
their modules directly rather than re-exported here.
"""
