"""Versioned knowledge vault: snapshots, commit graph, merges, context index.

Layout:
    <vault>/
    ├── domains/                       # Tracked markdown documents, one dir per domain
    └── .gitnu/
        ├── config.toml                # Vault settings (read-only for the engine)
        ├── HEAD                       # "ref: refs/heads/<branch>" or "detached: <hash>"
        ├── refs/heads/<branch>        # Head hash + optional description
        ├── commits/<branch>.jsonl     # Append-only commit records
        ├── objects/<xx>/<hash>[.zst]  # Content-addressed blobs, manifests, commits
        ├── index.json                 # Loaded / pinned / excluded paths
        ├── tmp/                       # Temp files awaiting atomic rename
        └── lock                       # Advisory lock for mutations

Callers hold an explicit `Vault` handle (see `gitnu.vault.vault`).
"""
