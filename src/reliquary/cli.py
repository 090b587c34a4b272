import argparse
import logging
from pathlib import Path

from .config import SaveSettings
from .coordinator import SaveCoordinator
from .errors import ReliquaryError
from .logging_config import configure_logging
from .models import ActiveState
from .storage import JsonFileStorage

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="reliquary",
        description="Inspect and maintain Reliquary savegames.",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to a save settings YAML file.",
    )
    parser.add_argument(
        "--save-dir",
        dest="save_dir",
        type=Path,
        default=None,
        help="Savegame directory (overrides the settings file).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List save records, oldest first.")
    show = sub.add_parser("show", help="Print the entries of a savegame.")
    show.add_argument("save_name")
    delete = sub.add_parser("delete", help="Delete a savegame and its record.")
    delete.add_argument("save_name")
    return parser.parse_args(argv)


def _cmd_list(settings: SaveSettings) -> int:
    with SaveCoordinator(settings) as coordinator:
        records = coordinator.save_records
    if not records:
        print(f"No saves in {settings.savegame_directory}")
        return 0
    for record in records:
        label = record.display_name or "(auto save)"
        print(
            f"{record.save_name}  {record.save_date:%Y-%m-%d %H:%M:%S}  "
            f"v{record.save_version}  {label}"
        )
    return 0


def _cmd_show(settings: SaveSettings, save_name: str) -> int:
    state = JsonFileStorage().read(settings.save_file_path(save_name), ActiveState)
    if state is None:
        print(f"Savegame not found: {save_name}")
        return 1
    for key, content in state.items():
        print(f"{key}: {content}")
    return 0


def _cmd_delete(settings: SaveSettings, save_name: str) -> int:
    with SaveCoordinator(settings) as coordinator:
        if not any(r.save_name == save_name for r in coordinator.save_records):
            print(f"No save record named {save_name}")
            return 1
        coordinator.request_game_delete(save_name)
        coordinator.wait_until_idle()
        coordinator.update()
    print(f"Deleted {save_name}")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(level=logging.DEBUG if args.debug else logging.WARNING)

    try:
        settings = SaveSettings.load(user_path=args.config_path, save_directory=args.save_dir)
        if args.command == "list":
            return _cmd_list(settings)
        if args.command == "show":
            return _cmd_show(settings, args.save_name)
        return _cmd_delete(settings, args.save_name)
    except ReliquaryError as exc:
        logger.error("%s", exc)
        return 2
