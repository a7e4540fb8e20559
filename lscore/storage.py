import os
import json
import sys
import logging

from .versions import Game

logger = logging.getLogger("LSCore.Storage")

# Steam install folder names, relative to steamapps/common
_STEAM_FOLDERS = {
    Game.DIVINITY_ORIGINAL_SIN: "Divinity - Original Sin",
    Game.DIVINITY_ORIGINAL_SIN_EE: "Divinity Original Sin Enhanced Edition",
    Game.DIVINITY_ORIGINAL_SIN_2: "Divinity Original Sin 2",
    Game.DIVINITY_ORIGINAL_SIN_2_DE: "Divinity Original Sin 2",
    Game.BALDURS_GATE_3: "Baldurs Gate 3",
}


class StorageManager:
    def __init__(self, data_dir=None):
        if data_dir:
            self.data_dir = data_dir
        else:
            self.data_dir = os.path.join(os.getcwd(), "data")

        self.config_file = os.path.join(self.data_dir, "config.json")
        self.default_extract_dir = os.path.join(self.data_dir, "extracted")

        self.ensure_directories()
        self.config = self.load_config()

    def ensure_directories(self):
        for d in [self.data_dir]:
            if not os.path.exists(d):
                os.makedirs(d)

    def load_config(self):
        default = {
            "log_level": "INFO",
            "log_file": os.path.join(self.data_dir, "lscore.log"),
            "extract_dir": self.default_extract_dir,
            "game_data_dir": "",
            "game": Game.BALDURS_GATE_3.name,
        }
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    data = json.load(f)
                    default.update(data)
            except (OSError, ValueError) as e:
                logger.warning(f"Ignoring unreadable config {self.config_file}: {e}")
        return default

    def save_config(self, new_config):
        self.config.update(new_config)
        with open(self.config_file, 'w') as f:
            json.dump(self.config, f, indent=2)
        return self.config

    @property
    def game(self):
        return Game.from_name(self.config.get("game") or Game.BALDURS_GATE_3.name)

    def extract_dir_for(self, package_path):
        """data/extracted/<package stem>, or under the configured extract_dir"""
        base = self.config.get("extract_dir") or self.default_extract_dir
        stem = os.path.splitext(os.path.basename(package_path))[0]
        return os.path.join(base, stem)

    def try_auto_detect_game(self, game=None):
        """Attempts to find the game's Data folder based on default Steam paths"""
        game = game or self.game
        folder = _STEAM_FOLDERS[game]
        candidates = []
        if sys.platform.startswith('linux'):
            # Path: ~/.steam/steam/steamapps/common/<game>/Data
            for root in ("~/.steam/steam", "~/.local/share/Steam"):
                candidates.append(os.path.expanduser(os.path.join(root, "steamapps", "common", folder, "Data")))
        elif sys.platform == 'win32':
            # Path: %ProgramFiles(x86)%/Steam/steamapps/common/<game>/Data
            program_files = os.getenv('ProgramFiles(x86)')
            if program_files:
                candidates.append(os.path.join(program_files, "Steam", "steamapps", "common", folder, "Data"))
        elif sys.platform == 'darwin':
            candidates.append(os.path.expanduser(os.path.join(
                "~/Library/Application Support/Steam/steamapps/common", folder, "Data")))

        for path in candidates:
            if os.path.exists(path):
                logger.info(f"Found {game.name} data at {path}")
                return path
        return ""
