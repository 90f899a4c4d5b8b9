import logging
from typing import Dict, List, Optional, Sequence
import pandas as pd
import requests

#
# Date: Sunday 18th October 2026
# Modification : v2.0.0 AstroBin filter database download.
# Author : SDG
#

FILTER_API_URL = 'https://app.astrobin.com/api/v2/equipment/filter/?format=json&page_size=50'
REQUEST_HEADERS = {'User-Agent': 'WBPPLogUpload/2.0', 'Accept': 'application/json'}
FILTER_COLUMNS = ['id', 'brandName', 'name']

def fetch_astrobin_filters(logger: logging.Logger, url: str = FILTER_API_URL, session: Optional[requests.Session] = None,
                           timeout: float = 30.0) -> List[Dict]:
    """Downloads the AstroBin filter equipment database.

    Pages are followed through their 'next' link until it is null. A network or
    JSON error ends the download with the filters collected so far.

    Args:
        logger (logging.Logger): Application logger.
        url (str): First page of the filter API.
        session (requests.Session, optional): Session used for the requests.
        timeout (float): Seconds to wait for each page.

    Returns:
        List[Dict]: Filters as {'id', 'brandName', 'name'} dictionaries.
    """
    logger.info("")
    logger.info("FETCHING ASTROBIN FILTER DATABASE")
    http = session or requests.Session()
    filters: List[Dict] = []
    next_url = url

    while next_url:
        logger.info(f"Fetching: {next_url}")
        try:
            response = http.get(next_url, headers=REQUEST_HEADERS, timeout=timeout)
            response.raise_for_status()
            page = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Network error fetching filters: {str(e)}")
            break
        except ValueError as e:
            logger.error(f"JSON parse error fetching filters: {str(e)}")
            break

        if not isinstance(page, dict):
            logger.error("Unexpected filter API response, expected a JSON object")
            break

        for item in page.get('results') or []:
            try:
                filter_id = int(item.get('id', -1))
            except (TypeError, ValueError):
                continue
            name = (item.get('name') or '').strip()
            if filter_id < 0 or not name:
                continue
            filters.append({'id': filter_id, 'brandName': (item.get('brandName') or '').strip(), 'name': name})

        next_url = page.get('next')
        logger.info(f"{len(filters)} filters collected so far" if next_url else f"Done. {len(filters)} filters fetched.")

    return filters

def save_filter_database(filters: Sequence[Dict], filename: str, logger: logging.Logger) -> pd.DataFrame:
    """Writes the downloaded filters to a CSV file and returns them as a DataFrame."""
    filters_df = pd.DataFrame(list(filters), columns=FILTER_COLUMNS)
    filters_df.to_csv(filename, index=False)
    logger.info(f"{len(filters_df)} filters saved to {filename}")
    return filters_df

def load_filter_database(filename: str, logger: logging.Logger) -> pd.DataFrame:
    try:
        return pd.read_csv(filename, dtype={'id': int, 'brandName': str, 'name': str}, keep_default_na=False)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read filter database {filename}: {str(e)}")
        return pd.DataFrame(columns=FILTER_COLUMNS)

def suggest_filter_ids(filters_df: pd.DataFrame, local_names: Sequence[str], logger: logging.Logger,
                       limit: int = 10) -> Dict[str, pd.DataFrame]:
    """Lists database filters whose name contains each unmapped local filter name.

    Returns:
        Dict[str, pd.DataFrame]: Candidate rows per local filter name, at most `limit` each.
    """
    suggestions = {}
    if filters_df.empty:
        return suggestions
    names = filters_df['name'].astype(str).str.lower()
    for local_name in local_names:
        mask = names.str.contains(local_name.strip().lower(), regex=False)
        suggestions[local_name] = filters_df[mask].head(limit)
        logger.info(f"{mask.sum()} database filters match '{local_name}'")
    return suggestions
