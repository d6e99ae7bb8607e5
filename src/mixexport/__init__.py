# Mix Export Engine: DJ mix packages from a subscription video catalog
# Package: src.mixexport

__version__ = "1.0.0-dev"
__author__ = "TheVideoPool Contributors"
__description__ = "Streaming zip packages with cue sheets and credit accounting for DJ video pools"

# Module structure:
#   - mixexport.resolve   : Track list resolution & credit ledger
#   - mixexport.assemble  : Archive streaming, cue sheets, manifests
#   - mixexport.export    : Pipeline, artifact lifecycle, service entry points
#   - mixexport.storage   : Blob Stream Store backends (local disk, S3)
#   - mixexport.config    : Configuration management
#   - mixexport.db        : SQLite accounts, catalog snapshot, history
