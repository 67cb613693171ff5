"""Access to the deployment record store.

`store` defines the filtered, paginated listing contract and its MongoDB
implementation; `scanner` pages through it for one bucket window.
"""
