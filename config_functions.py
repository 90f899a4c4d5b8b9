import logging
import os
from io import StringIO
from typing import Any, Dict, List, Optional, Tuple
from configobj import ConfigObj

config_version = '2.0.0'
#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Settings for WBPP log processing.
# 1. [defaults] holds target keywords, grouping strategy, site and search roots.
# 2. [targets] maps AstroBin target names to the names used in the logs.
# 3. [sites] entries reduced to bortle and sqm.
# Author : SDG
#

GROUPING_STRATEGIES = ('ByDate', 'ByDateGainTemp', 'Collapsed')

def cast_value(value: Any, logger: Optional[logging.Logger] = None) -> Any:
    """Casts a configuration value to a list, float, int or string.

    Lists are cast item by item, comma separated strings become lists, strings
    containing a period become floats when they parse as one and numeric
    strings become ints. Anything else is returned unchanged.

    Args:
        value (Any): The value read from the configuration file.
        logger (logging.Logger, optional): Logger instance for logging messages. Defaults to None.

    Returns:
        Any: The cast value.
    """
    if isinstance(value, list):
        return [cast_value(item, logger) for item in value]
    if not isinstance(value, str):
        return value
    if ',' in value:
        return [cast_value(item.strip(), logger) for item in value.split(',') if item.strip()]
    try:
        cast_result = float(value) if '.' in value else int(value)
        logger.debug(f"Cast {value} to {type(cast_result).__name__}") if logger else None
        return cast_result
    except ValueError:
        return value

def get_default_ini_string(logger: Optional[logging.Logger] = None) -> str:
    """Generates the default configuration written when no config.ini exists.

    Args:
        logger (logging.Logger, optional): Logger instance for logging messages. Defaults to None.

    Returns:
        str: A string containing the default INI configuration.
    """
    logger.info("Generating default INI configuration string") if logger else None
    ini_string = """
    [defaults]
    TARGETKEYWORDS = ""
    GROUPING = ByDate
    SITE = None
    FRAMEDIRS = ""
    MASTERDIRS = ""
    [filters]
    Ha = 4663
    SII = 4844
    OIII = 4752
    Red = 4649
    Green = 4643
    Blue = 4637
    Lum = 2906
    CLS = 4632
    [targets]
    [sites]
    """
    return ini_string

def cast_section(section: Dict[Any, Any], logger: Optional[logging.Logger] = None) -> None:
    """Recursively casts the values of a configuration section in place.

    Args:
        section (Dict[Any, Any]): Configuration section to cast.
        logger (logging.Logger, optional): Logger instance for logging messages. Defaults to None.

    Raises:
        ValueError: If section is not a dictionary.
    """
    if not isinstance(section, dict):
        raise ValueError(f"section must be a dictionary, got {type(section).__name__}")
    for key, value in section.items():
        if isinstance(value, dict):
            cast_section(value, logger)
        else:
            section[key] = cast_value(value, logger)

def initialise_config(filename: str, logger: Optional[logging.Logger] = None) -> Tuple[ConfigObj, bool]:
    """Reads the configuration file, creating it with default values if it does not exist.

    Args:
        filename (str): Path to the configuration file (e.g., config.ini).
        logger (logging.Logger, optional): Logger instance for logging messages. Defaults to None.

    Returns:
        Tuple[ConfigObj, bool]: The configuration and True if the file was created.

    Raises:
        ValueError: If filename is not a non-empty string or logger is invalid.
        OSError: If the configuration file cannot be read or written.
    """
    try:
        if logger and not isinstance(logger, logging.Logger):
            raise ValueError("logger must be a logging.Logger instance")
        if not isinstance(filename, str) or not filename.strip():
            raise ValueError("filename must be a non-empty string")

        change = False
        if not os.path.exists(filename):
            logger.info(f"No configuration file found at {filename}, creating new one") if logger else None
            config = ConfigObj(StringIO(get_default_ini_string(logger)), encoding='utf-8')
            config.filename = filename
            try:
                config.write()
                change = True
            except OSError as e:
                logger.error(f"Failed to write configuration file {filename}: {str(e)}") if logger else None
                raise OSError(f"Failed to write configuration file {filename}: {str(e)}")
        else:
            config = ConfigObj(filename, encoding='utf-8')
            logger.info(f"Configuration file found at {filename}") if logger else None

        # Normalise structure, then cast values for use
        correct_config(config, logger)
        cast_section(config, logger)
        logger.info(f"Configuration object: {dict(config)}") if logger else None
        return config, change

    except Exception as e:
        if isinstance(logger, logging.Logger):
            logger.error(f"Error initializing configuration: {str(e)}")
        raise

def correct_config(config: ConfigObj, logger: Optional[logging.Logger] = None) -> None:
    """Normalises section names, restores missing sections and default keys, and saves the result.

    Args:
        config (ConfigObj): Configuration object to correct.
        logger (logging.Logger, optional): Logger instance for logging messages. Defaults to None.

    Raises:
        ValueError: If config is not a ConfigObj.
        OSError: If the configuration file cannot be written.
    """
    if not isinstance(config, ConfigObj):
        raise ValueError(f"config must be a ConfigObj, got {type(config).__name__}")

    reference = ConfigObj(StringIO(get_default_ini_string(logger)), encoding='utf-8')
    normalize_section_names(config, logger)
    reconstruct_config(config, reference, logger)

    config['defaults'] = {key.upper().replace(' ', ''): value for key, value in config['defaults'].items()}
    ensure_default_keys_order(config['defaults'], reference['defaults'], logger)
    process_sites_section(config, logger)

    if config.filename:
        try:
            config.write()
            logger.info(f"Saved corrected configuration to {config.filename}") if logger else None
        except OSError as e:
            logger.error(f"Failed to write configuration file {config.filename}: {str(e)}") if logger else None
            raise OSError(f"Failed to write configuration file {config.filename}: {str(e)}")

def normalize_section_names(config: ConfigObj, logger: Optional[logging.Logger] = None) -> None:
    # Section names are compared lower case without spaces
    for key in list(config.keys()):
        if isinstance(config[key], dict):
            normalized_key = key.lower().replace(' ', '')
            if key != normalized_key:
                config[normalized_key] = config.pop(key)
                logger.info(f"Normalized section name from {key} to {normalized_key}") if logger else None

def reconstruct_config(config: ConfigObj, reference_config: ConfigObj, logger: Optional[logging.Logger] = None) -> None:
    """Keeps only the sections of the reference configuration, in reference order,
    taking existing sections from `config` and missing ones from the reference."""
    sections = {}
    for section in reference_config:
        if section in config:
            sections[section] = config[section].dict() if hasattr(config[section], 'dict') else dict(config[section])
        else:
            logger.info(f"Added missing section {section}") if logger else None
            sections[section] = reference_config[section].dict()
    config.clear()
    config.update(sections)

def ensure_default_keys_order(defaults_section: Dict, reference_defaults: Dict, logger: Optional[logging.Logger] = None) -> None:
    """Orders the 'defaults' keys like the reference and adds any that are missing."""
    ordered_keys = {}
    for key in reference_defaults:
        normalized_key = key.upper().replace(' ', '')
        if normalized_key in defaults_section:
            ordered_keys[normalized_key] = defaults_section[normalized_key]
        else:
            ordered_keys[normalized_key] = reference_defaults[key]
            logger.info(f"Added missing key {normalized_key} from reference defaults") if logger else None
    for key in defaults_section:
        if key not in ordered_keys:
            ordered_keys[key] = defaults_section[key]
    defaults_section.clear()
    defaults_section.update(ordered_keys)

def process_sites_section(config: ConfigObj, logger: Optional[logging.Logger] = None) -> None:
    """Normalises each [sites] subsection to lower case keys with bortle and sqm present.

    Args:
        config (ConfigObj): Configuration object containing the 'sites' section.
        logger (logging.Logger, optional): Logger instance for logging messages. Defaults to None.
    """
    if 'sites' not in config:
        return
    for subsection in list(config['sites'].keys()):
        stripped = subsection.strip()
        values = config['sites'].pop(subsection)
        if not isinstance(values, dict):
            logger.warning(f"Ignoring [sites] entry {subsection}, it is not a subsection") if logger else None
            continue
        normalized = {key.lower().replace(' ', ''): value for key, value in values.items()}
        site = {'bortle': normalized.pop('bortle', ''), 'sqm': normalized.pop('sqm', '')}
        site.update(normalized)
        config['sites'][stripped] = site
        logger.info(f"Normalized site {stripped}") if logger else None

def as_list(value: Any) -> List[str]:
    """Returns a configuration value as a list of non-empty strings."""
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [str(item).strip() for item in value if str(item).strip() and str(item).strip() != 'None']

def get_target_keywords(config: ConfigObj) -> List[str]:
    return as_list(config['defaults'].get('TARGETKEYWORDS'))

def get_search_roots(config: ConfigObj, key: str) -> List[str]:
    """Returns the existing directories listed under a [defaults] key."""
    return [os.path.abspath(root) for root in as_list(config['defaults'].get(key)) if os.path.isdir(root)]

def get_grouping_strategy(config: ConfigObj, logger: Optional[logging.Logger] = None) -> str:
    strategy = str(config['defaults'].get('GROUPING', 'ByDate')).strip()
    for known in GROUPING_STRATEGIES:
        if known.lower() == strategy.lower():
            return known
    logger.warning(f"Unknown grouping strategy {strategy}, using ByDate") if logger else None
    return 'ByDate'

def astrobin_filter_id(config: ConfigObj, local_name: str) -> Optional[Any]:
    """Returns the [filters] entry for a filter name, compared case-insensitively."""
    target = (local_name or '').strip().lower()
    for name, code in config.get('filters', {}).items():
        if name.strip().lower() == target:
            return code
    return None

def astrobin_target_name(config: ConfigObj, log_target: str) -> str:
    """Returns the AstroBin target a log target belongs to, or the log target itself."""
    for astrobin_name, members in config.get('targets', {}).items():
        if any(member.lower() == log_target.lower() for member in as_list(members)):
            return astrobin_name
    return log_target
