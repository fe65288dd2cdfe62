"""
Pastes delivered text into the focused application.
"""

import logging
import platform
import time

import pyautogui
import pyperclip


class TextInserter:
    """
    Inserts text through the clipboard and a simulated paste shortcut.
    On Windows the native clipboard API is tried first.
    """

    PASTE_SETTLE_S = 0.2

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.system = platform.system()
        self.win32_available = False
        if self.system == "Windows":
            try:
                import win32clipboard  # noqa: F401
                import win32con  # noqa: F401
                self.win32_available = True
            except ImportError:
                self.logger.warning("win32 modules not available, using pyperclip for clipboard access")

    def insert_text(self, text):
        """
        Paste ``text`` into the active window.

        Returns:
            bool: True if the paste was issued
        """
        if not text:
            return True
        self.logger.debug(f"Inserting text: {text[:20]}{'...' if len(text) > 20 else ''}")
        if self.win32_available and self._insert_text_win32(text):
            return True
        return self._insert_text_pyperclip(text)

    def _paste_shortcut(self):
        modifier = "command" if self.system == "Darwin" else "ctrl"
        pyautogui.hotkey(modifier, "v")

    def _insert_text_win32(self, text):
        import win32clipboard
        import win32con

        try:
            original = None
            win32clipboard.OpenClipboard()
            try:
                if win32clipboard.IsClipboardFormatAvailable(win32con.CF_UNICODETEXT):
                    original = win32clipboard.GetClipboardData(win32con.CF_UNICODETEXT)
                win32clipboard.EmptyClipboard()
                win32clipboard.SetClipboardText(text, win32con.CF_UNICODETEXT)
            finally:
                win32clipboard.CloseClipboard()

            self._paste_shortcut()
            time.sleep(self.PASTE_SETTLE_S)

            if original is not None:
                win32clipboard.OpenClipboard()
                try:
                    win32clipboard.EmptyClipboard()
                    win32clipboard.SetClipboardText(original, win32con.CF_UNICODETEXT)
                finally:
                    win32clipboard.CloseClipboard()
            self.logger.info("Inserted text using Windows clipboard API")
            return True
        except Exception as e:
            self.logger.error(f"Error inserting text with Windows clipboard API: {e}")
            return False

    def _insert_text_pyperclip(self, text):
        try:
            try:
                original = pyperclip.paste()
            except pyperclip.PyperclipException:
                original = ""

            pyperclip.copy(text)
            self._paste_shortcut()
            time.sleep(self.PASTE_SETTLE_S)
            pyperclip.copy(original)
            self.logger.info("Inserted text using clipboard paste")
            return True
        except Exception as e:
            self.logger.error(f"Error inserting text: {e}")
            return False
