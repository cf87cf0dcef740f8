from wds.config.loader import load_runtime_config, runtime_config_to_dict
from wds.config.models import RuntimeConfig, Settings

__all__ = ["RuntimeConfig", "Settings", "load_runtime_config", "runtime_config_to_dict"]
