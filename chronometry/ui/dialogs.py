"""Login, stop-confirmation and photo dialogs using tkinter."""

import logging
import threading
import tkinter as tk
from dataclasses import dataclass
from pathlib import Path
from tkinter import filedialog, messagebox, ttk
from typing import Callable, Optional

from ..auth.login import LoginState
from ..controller import StopPrompt
from .formatting import format_duration

__all__ = [
    "LoginWindow",
    "StopDialog",
    "StopResult",
    "ask_photo_file",
    "show_error",
    "show_info",
]

logger = logging.getLogger(__name__)

PHOTO_FILETYPES = [
    ("Images", "*.jpg *.jpeg *.png *.heic *.webp *.bmp"),
    ("All files", "*.*"),
]


def _center(window: tk.Tk, width: int, height: int) -> None:
    window.geometry(f"{width}x{height}")
    window.update_idletasks()
    x = (window.winfo_screenwidth() - width) // 2
    y = (window.winfo_screenheight() - height) // 2
    window.geometry(f"+{x}+{y}")


class LoginWindow:
    """Login / registration dialog window."""

    def __init__(
        self,
        on_login: Callable[[str, str], LoginState],
        on_register: Callable[[str, str, str], LoginState],
        on_cancel: Optional[Callable[[], None]] = None,
    ):
        """Initialize login window.

        Args:
            on_login: Callback with (username, password)
            on_register: Callback with (username, password, first_name)
            on_cancel: Callback when cancelled
        """
        self._on_login = on_login
        self._on_register = on_register
        self._on_cancel = on_cancel
        self._window: Optional[tk.Tk] = None
        self._registering = False
        self.state: Optional[LoginState] = None

    def show(self) -> Optional[LoginState]:
        """Show the window; returns the login state once it closes."""
        self._window = tk.Tk()
        self._window.title("Chronometry - Sign In")
        self._window.resizable(False, False)
        _center(self._window, 400, 360)

        self._username_var = tk.StringVar()
        self._password_var = tk.StringVar()
        self._first_name_var = tk.StringVar()
        self._message_var = tk.StringVar()

        frame = ttk.Frame(self._window, padding=20)
        frame.pack(fill=tk.BOTH, expand=True)

        self._title = ttk.Label(frame, text="Sign in to Chronometry", font=("Helvetica", 16, "bold"))
        self._title.pack(pady=(0, 16))

        self._first_name_frame = ttk.Frame(frame)
        ttk.Label(self._first_name_frame, text="First name:").pack(anchor=tk.W)
        ttk.Entry(self._first_name_frame, textvariable=self._first_name_var, width=40).pack(fill=tk.X)

        username_frame = ttk.Frame(frame)
        username_frame.pack(fill=tk.X, pady=5)
        ttk.Label(username_frame, text="Username:").pack(anchor=tk.W)
        username_entry = ttk.Entry(username_frame, textvariable=self._username_var, width=40)
        username_entry.pack(fill=tk.X)
        username_entry.focus()

        password_frame = ttk.Frame(frame)
        password_frame.pack(fill=tk.X, pady=5)
        ttk.Label(password_frame, text="Password:").pack(anchor=tk.W)
        ttk.Entry(password_frame, textvariable=self._password_var, show="*", width=40).pack(fill=tk.X)

        self._message_label = ttk.Label(
            frame, textvariable=self._message_var, foreground="red", wraplength=360
        )
        self._message_label.pack(pady=10)

        button_frame = ttk.Frame(frame)
        button_frame.pack(fill=tk.X, pady=5)
        ttk.Button(button_frame, text="Cancel", command=self._cancel).pack(side=tk.LEFT)
        self._submit_button = ttk.Button(button_frame, text="Sign In", command=self._submit)
        self._submit_button.pack(side=tk.RIGHT)

        self._toggle_button = ttk.Button(frame, text="Create an account", command=self._toggle_mode)
        self._toggle_button.pack()

        self._window.bind("<Return>", lambda e: self._submit())
        self._window.bind("<Escape>", lambda e: self._cancel())
        self._window.protocol("WM_DELETE_WINDOW", self._cancel)

        self._window.mainloop()
        return self.state

    def _toggle_mode(self) -> None:
        self._registering = not self._registering
        self._message_var.set("")
        if self._registering:
            self._title.config(text="Create an account")
            self._submit_button.config(text="Register")
            self._toggle_button.config(text="I already have an account")
            self._first_name_frame.pack(fill=tk.X, pady=5, before=self._message_label)
        else:
            self._title.config(text="Sign in to Chronometry")
            self._submit_button.config(text="Sign In")
            self._toggle_button.config(text="Create an account")
            self._first_name_frame.pack_forget()

    def _submit(self) -> None:
        """Handle submit button click."""
        username = self._username_var.get().strip()
        password = self._password_var.get()
        first_name = self._first_name_var.get().strip()

        if not username or not password:
            self._show_message("Please enter username and password")
            return

        self._submit_button.config(state=tk.DISABLED)
        self._show_message("Please wait...", error=False)

        # Network call off the Tk thread
        def do_submit():
            try:
                if self._registering:
                    state = self._on_register(username, password, first_name)
                else:
                    state = self._on_login(username, password)
            except Exception as e:
                logger.exception("Login callback failed")
                state = LoginState(logged_in=False, error=str(e))
            self._window.after(0, lambda: self._handle_result(state))

        threading.Thread(target=do_submit, daemon=True).start()

    def _handle_result(self, state: LoginState) -> None:
        """Handle login result on main thread."""
        self._submit_button.config(state=tk.NORMAL)

        if state.logged_in:
            self.state = state
            self._window.destroy()
        elif state.error:
            self._show_message(state.error)
        else:
            # Registration accepted, awaiting approval
            self._toggle_mode()
            self._show_message(state.message or "Registered", error=False)

    def _show_message(self, text: str, error: bool = True) -> None:
        self._message_label.config(foreground="red" if error else "gray25")
        self._message_var.set(text)

    def _cancel(self) -> None:
        if self._on_cancel:
            self._on_cancel()
        if self._window:
            self._window.destroy()


@dataclass
class StopResult:
    """Result from the stop dialog."""

    confirmed: bool = False
    comment: str = ""


class StopDialog:
    """Stop confirmation with an optional comment."""

    def __init__(self, prompt: StopPrompt):
        self._prompt = prompt
        self._result = StopResult()
        self._window: Optional[tk.Tk] = None

    def show(self) -> StopResult:
        self._window = tk.Tk()
        self._window.title("Chronometry - Stop")
        self._window.resizable(False, False)
        _center(self._window, 420, 320)

        frame = ttk.Frame(self._window, padding=20)
        frame.pack(fill=tk.BOTH, expand=True)

        prompt = self._prompt
        ttk.Label(frame, text=f"Stop {prompt.process_name}?", font=("Helvetica", 14, "bold")).pack(anchor=tk.W)
        ttk.Label(frame, text=f"Time: {format_duration(prompt.elapsed_seconds)}").pack(anchor=tk.W, pady=(4, 8))

        if prompt.has_remaining_steps:
            names = ", ".join(s.name for s in prompt.remaining_steps)
            ttk.Label(
                frame,
                text=f"{len(prompt.remaining_steps)} step(s) not completed: {names}",
                foreground="#b45309",
                wraplength=380,
            ).pack(anchor=tk.W, pady=(0, 8))

        ttk.Label(frame, text="Comment (optional):").pack(anchor=tk.W)
        self._comment = tk.Text(frame, height=4, width=48)
        self._comment.pack(fill=tk.X)
        self._comment.focus()

        button_frame = ttk.Frame(frame)
        button_frame.pack(fill=tk.X, pady=(12, 0))
        ttk.Button(button_frame, text="Continue", command=self._cancel).pack(side=tk.LEFT)
        ttk.Button(button_frame, text="Stop", command=self._confirm).pack(side=tk.RIGHT)

        self._window.bind("<Escape>", lambda e: self._cancel())
        self._window.protocol("WM_DELETE_WINDOW", self._cancel)

        self._window.mainloop()
        return self._result

    def _confirm(self) -> None:
        comment = self._comment.get("1.0", tk.END).strip()
        self._result = StopResult(confirmed=True, comment=comment)
        self._window.destroy()

    def _cancel(self) -> None:
        self._result = StopResult(confirmed=False)
        self._window.destroy()


def _hidden_root() -> tk.Tk:
    root = tk.Tk()
    root.withdraw()
    root.attributes("-topmost", True)
    return root


def ask_photo_file(instructions: str = "") -> Optional[Path]:
    """Ask for an image file; returns None when cancelled."""
    root = _hidden_root()
    try:
        filename = filedialog.askopenfilename(
            parent=root,
            title=instructions or "Choose a photo",
            filetypes=PHOTO_FILETYPES,
        )
    finally:
        root.destroy()
    return Path(filename) if filename else None


def show_error(message: str, title: str = "Chronometry") -> None:
    root = _hidden_root()
    try:
        messagebox.showerror(title, message, parent=root)
    finally:
        root.destroy()


def show_info(message: str, title: str = "Chronometry") -> None:
    root = _hidden_root()
    try:
        messagebox.showinfo(title, message, parent=root)
    finally:
        root.destroy()
