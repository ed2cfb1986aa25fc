from __future__ import annotations

ENGRAMS_DIR = ".engrams"
MANIFEST_FILENAME = "engram.toml"
README_FILENAME = "README.md"
CONTENT_DIR = "content"

INDEX_REF = "refs/engrams/index"
INDEX_REF_NAMESPACE = "refs/engrams"
INDEX_FILENAME = "index.json"
AUTO_FETCH_REFSPEC = "+refs/engrams/*:refs/engrams/*"

MIN_DESCRIPTION_LENGTH = 20
TOOL_NAME_PREFIX = "engram_"
