import logging
import math
from typing import Dict, Optional, Union
from configobj import ConfigObj

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Observing sites read from [sites] instead of geocoded from headers.
# Author : SDG
#

# Lower SQM bound of Bortle classes 1 to 8, anything darker than the last bound is class 9
BORTLE_SQM_BOUNDS = ((1, 21.99), (2, 21.50), (3, 21.25), (4, 20.50), (5, 19.50), (6, 18.50), (7, 17.50), (8, 17.00))

def sqm_to_bortle(sqm: float, logger: logging.Logger) -> int:
    """Converts an SQM value to a Bortle scale classification.

    Maps the Sky Quality Meter (SQM) value to a Bortle scale class (1-9) based on predefined ranges.

    Args:
        sqm (float): Sky Quality Meter value in mag/arcsec².
        logger: Logger object for logging messages.

    Returns:
        int: Bortle scale classification (1-9).
    """
    if sqm > BORTLE_SQM_BOUNDS[0][1]:
        bortle = 1
    else:
        bortle = 9
        for bortle_class, lower_bound in BORTLE_SQM_BOUNDS[1:]:
            if sqm >= lower_bound:
                bortle = bortle_class
                break
    logger.debug(f"SQM value {sqm} corresponds to Bortle scale {bortle}")
    return bortle

def to_number(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) and number > 0 else None

def get_site(config: ConfigObj, site_name: Optional[str], logger: logging.Logger) -> Dict[str, Optional[Union[int, float]]]:
    """Returns the bortle and meanSqm values of a configured site.

    A site with an SQM value but no bortle class gets its class from the SQM.
    Unknown or unset sites give None for both values.

    Args:
        config (ConfigObj): Configuration holding the [sites] section.
        site_name (str, optional): Name of the [sites] subsection.
        logger (logging.Logger): Logger instance for logging messages.

    Returns:
        Dict[str, Optional[Union[int, float]]]: {'bortle': ..., 'meanSqm': ...}
    """
    site = {'bortle': None, 'meanSqm': None}
    if not site_name or str(site_name) == 'None':
        return site

    sites = config.get('sites', {})
    entry = next((values for name, values in sites.items() if name.lower() == str(site_name).lower()), None)
    if entry is None:
        logger.warning(f"Site {site_name} is not defined in [sites]")
        return site

    sqm = to_number(entry.get('sqm'))
    bortle = to_number(entry.get('bortle'))
    if sqm is not None:
        site['meanSqm'] = round(sqm, 2)
    if bortle is not None:
        site['bortle'] = int(round(bortle))
    elif sqm is not None:
        site['bortle'] = sqm_to_bortle(sqm, logger)
    logger.info(f"Site {site_name}: bortle={site['bortle']} meanSqm={site['meanSqm']}")
    return site
