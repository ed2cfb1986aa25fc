from __future__ import annotations

import argparse
import json
import os

from engrams.core.config import EngramsFsPaths, load_config, resolve_cache_dir
from engrams.core.config.io import atomic_write_json
from engrams.core.config.models import default_config_dict


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the effective engrams configuration.")
    ap.add_argument("--write-defaults", action="store_true", help="Write a default config.json if none exists.")
    args = ap.parse_args()

    fs = EngramsFsPaths.from_env()
    if args.write_defaults:
        if not os.path.exists(fs.config_file):
            atomic_write_json(fs.config_file, default_config_dict())
    cfg = load_config(fs)
    out = cfg.model_dump()
    out["resolved"] = {
        "config_file": fs.config_file,
        "global_dir": fs.global_dir,
        "cache_dir": resolve_cache_dir(cfg, fs),
        "log_dir": fs.log_dir,
    }
    print(json.dumps(out, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
