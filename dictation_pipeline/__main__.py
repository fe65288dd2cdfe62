"""
Entry point for the dictation app using PySide6.

Run without arguments to start the tray app. ``--import-packs`` and
``--export-packs`` manage user jargon packs and exit without starting Qt.
"""
import argparse
import sys
import os

from dictation_pipeline.exceptions import PackFormatError
from dictation_pipeline.utils.config_manager import ConfigManager
from dictation_pipeline.utils.logging_setup import setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="dictation-pipeline", description="Local dictation with jargon correction")
    parser.add_argument("--import-packs", metavar="PATH", help="import a jargon pack document and exit")
    parser.add_argument("--replace", action="store_true", help="with --import-packs, overwrite packs with the same id")
    parser.add_argument("--export-packs", metavar="PATH", help="export user jargon packs and exit")
    parser.add_argument("--pack", action="append", dest="pack_ids", metavar="ID",
                        help="with --export-packs, only export this pack (repeatable)")
    return parser.parse_args(argv)


def run_pack_command(args):
    """Handle pack import/export. Returns a process exit code."""
    logger = setup_logging()
    config_manager = ConfigManager()
    settings = config_manager.load_settings()

    if args.import_packs:
        try:
            report = config_manager.import_jargon_packs(settings, args.import_packs, args.replace)
        except (OSError, PackFormatError) as e:
            logger.error(f"Import failed: {e}")
            return 1
        for pack_id in report.imported:
            print(f"imported {pack_id}")
        for pack_id, reason in report.skipped:
            print(f"skipped {pack_id}: {reason}")
        return 0

    try:
        path = config_manager.export_jargon_packs(settings, args.export_packs, args.pack_ids)
    except OSError as e:
        logger.error(f"Export failed: {e}")
        return 1
    print(f"exported to {path}")
    return 0


def add_cuda_dll_directory(settings, logger):
    """Make the CUDA runtime visible to faster-whisper on Windows."""
    if sys.platform != 'win32' or settings.device != "cuda":
        return
    cuda_path = settings.cuda_path
    if cuda_path and os.path.exists(cuda_path):
        try:
            os.add_dll_directory(cuda_path)
            logger.info(f"Added CUDA path to DLL directories: {cuda_path}")
        except OSError as e:
            logger.error(f"Error configuring CUDA path: {e}")
    elif cuda_path:
        logger.warning(f"CUDA path specified but not found: {cuda_path}")


def main(argv=None):
    """Main entry point for the application."""
    args = parse_args(argv)
    if args.import_packs or args.export_packs:
        sys.exit(run_pack_command(args))

    from PySide6.QtWidgets import QApplication
    from dictation_pipeline.core.app import DictationApp

    # Must exist before the core app connects signals to quit()
    qt_app = QApplication(sys.argv[:1])
    # Tray app: no window closing should end the process
    qt_app.setQuitOnLastWindowClosed(False)

    core_app = DictationApp()
    add_cuda_dll_directory(core_app.settings, core_app.logger)

    if not core_app.run():
        sys.exit(1)

    exit_code = qt_app.exec()
    core_app.logger.info(f"Qt event loop finished with exit code: {exit_code}")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
