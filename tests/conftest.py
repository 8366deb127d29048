import os
import tempfile

# Keep the module-level config_manager away from the real home directory
os.environ.setdefault(
    "CONTAINERDECK_CONFIG", os.path.join(tempfile.mkdtemp(prefix="containerdeck-test-"), "config.yaml")
)
