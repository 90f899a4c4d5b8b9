import logging
import os
import numpy as np
import pandas as pd
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple, Union
from configobj import ConfigObj

from config_functions import astrobin_filter_id, astrobin_target_name, get_grouping_strategy
from models import AcquisitionGroup
from sites_functions import get_site

#
# Date: Sunday 18th October 2026
# Modification : v2.0.0 Rows built from WBPP acquisition groups.
# 1. Groups combined per target and filter, duplicate logs ignored.
# 2. ByDate, ByDateGainTemp and Collapsed row strategies.
# 3. Ambient temperature averaged over the frames that report it.
# Author : SDG
#

ROW_COLUMNS = ['label', 'target', 'filterName', 'date', 'number', 'duration', 'binning', 'gain',
               'sensorCooling', 'darks', 'flats', 'bias', 'bortle', 'meanSqm', 'temperature']

def initialize_processing(config: ConfigObj, logger: logging.Logger, strategy: Optional[str] = None,
                          site_name: Optional[str] = None) -> Dict:
    """
    Initializes processing state.

    Parameters:
    config (ConfigObj): Application configuration.
    logger: Logger object for logging messages.
    strategy (str, optional): Grouping strategy overriding [defaults] GROUPING.
    site_name (str, optional): Site overriding [defaults] SITE.

    Returns:
    Dict: Dictionary containing initialized processing state.
    """
    if strategy:
        config['defaults']['GROUPING'] = strategy
    logger.info("Processing initialized")
    return {
        'config': config,
        'logger': logger,
        'strategy': get_grouping_strategy(config, logger),
        'site': get_site(config, site_name or config['defaults'].get('SITE'), logger),
        'warnings': []
    }

def display_target(group: AcquisitionGroup, config: ConfigObj) -> str:
    """Target shown for a group: its target or the log file name, mapped to the AstroBin target."""
    log_target = group.target or os.path.splitext(os.path.basename(group.source_log_file))[0]
    return astrobin_target_name(config, log_target)

def combine_groups(groups: Sequence[AcquisitionGroup], config: ConfigObj,
                   logger: logging.Logger) -> Dict[Tuple[str, str], List[AcquisitionGroup]]:
    """
    Combines groups by (target, filter) and drops groups that repeat frames already seen.

    Within a combination the largest groups come first; a group is kept only
    if at least one of its frame names has not been seen in an earlier group,
    so the same session loaded from two logs is counted once.

    Parameters:
    groups (Sequence[AcquisitionGroup]): Groups from every loaded log.
    config (ConfigObj): Configuration with the [targets] section.
    logger: Logger object for logging messages.

    Returns:
    Dict[Tuple[str, str], List[AcquisitionGroup]]: Kept groups per (target, filter), in key order.
    """
    combined: Dict[Tuple[str, str], List[AcquisitionGroup]] = {}
    for group in groups:
        combined.setdefault((display_target(group, config), group.filter), []).append(group)

    result = OrderedDict()
    for key in sorted(combined):
        ordered = sorted(combined[key], key=lambda g: g.frame_count, reverse=True)
        seen = set()
        kept = []
        for group in ordered:
            names = {os.path.basename(path) for path in group.frame_paths}
            if names - seen:
                kept.append(group)
                seen |= names
            else:
                logger.info(f"Ignoring duplicate group {key[0]} / {key[1]} from {group.source_log_file}")
        result[key] = kept
    return result

def build_frame_table(groups: Sequence[AcquisitionGroup], config: ConfigObj) -> pd.DataFrame:
    """
    Flattens groups into one row per frame.

    Parameters:
    groups (Sequence[AcquisitionGroup]): Groups to flatten.
    config (ConfigObj): Configuration with the [targets] section.

    Returns:
    pd.DataFrame: Frame table.
    """
    records = []
    for group_id, group in enumerate(groups):
        target = display_target(group, config)
        for index, path in enumerate(group.frame_paths):
            records.append({
                'group': group_id,
                'target': target,
                'filterName': group.filter,
                'file': os.path.basename(path),
                'path': path,
                'exposure': group.exposure_sec,
                'binning': group.binning,
                'resolved': group.frame_resolved[index],
                'date': group.frame_dates[index],
                'gain': group.frame_gains[index],
                'sensorTemp': group.frame_sensor_temps[index],
                'ambTemp': group.frame_amb_temps[index],
            })
    columns = ['group', 'target', 'filterName', 'file', 'path', 'exposure', 'binning', 'resolved',
               'date', 'gain', 'sensorTemp', 'ambTemp']
    return pd.DataFrame(records, columns=columns)

def mean_ambient(frames: pd.DataFrame) -> Optional[float]:
    temps = frames.loc[frames['resolved'] & frames['ambTemp'].notna(), 'ambTemp']
    if temps.empty:
        return None
    return float(temps.astype(float).mean())

def has_partial_ambient(frames: pd.DataFrame) -> bool:
    resolved = frames[frames['resolved']]
    with_temp = int(resolved['ambTemp'].notna().sum())
    return 0 < with_temp < len(resolved)

def base_row(first: AcquisitionGroup, target: str) -> Dict:
    # Values shared by every row of a (target, filter) combination
    return {
        'target': target,
        'filterName': first.filter,
        'duration': int(round(first.exposure_sec)),
        'binning': first.binning,
        'darks': first.darks if first.darks >= 0 else None,
        'flats': first.flats if first.flats >= 0 else None,
        'bias': first.bias if first.bias >= 0 else None,
    }

def bucket_keys(frames: pd.DataFrame, strategy: str) -> pd.DataFrame:
    """Adds the date, gain and sensor temperature bucket keys to a frame table."""
    frames = frames.copy()
    resolved = frames['resolved'].to_numpy(dtype=bool)
    frames['dateKey'] = [d.isoformat() if r and d is not None else '' for r, d in zip(resolved, frames['date'])]
    if strategy == 'ByDate':
        frames['gainKey'] = -1
        frames['tempKey'] = 0
    else:
        # Unresolved frames and missing values share the fallback bucket
        gains = pd.to_numeric(frames['gain'], errors='coerce').to_numpy(dtype=float)
        temps = pd.to_numeric(frames['sensorTemp'], errors='coerce').to_numpy(dtype=float)
        frames['gainKey'] = np.where(resolved & ~np.isnan(gains), np.nan_to_num(gains, nan=-1), -1).astype(int)
        frames['tempKey'] = np.where(resolved & ~np.isnan(temps), np.nan_to_num(temps, nan=0), 0).astype(int)
    return frames

def aggregate_rows(groups: Sequence[AcquisitionGroup], state: Dict) -> pd.DataFrame:
    """
    Builds the acquisition rows for every (target, filter) combination.

    Parameters:
    groups (Sequence[AcquisitionGroup]): Resolved acquisition groups.
    state (Dict): Processing state from initialize_processing.

    Returns:
    pd.DataFrame: One row per bucket with the ROW_COLUMNS columns.
    """
    logger = state['logger']
    config = state['config']
    strategy = state['strategy']
    logger.info("")
    logger.info(f"STARTING ROW AGGREGATION ({strategy})")

    rows = []
    partial_labels = []
    for (target, filter_name), kept in combine_groups(groups, config, logger).items():
        if not kept:
            continue
        frames = build_frame_table(kept, config)
        prefix = f"{target} / {filter_name}"

        if strategy == 'Collapsed':
            row = base_row(kept[0], target)
            dates = [d for r, d in zip(frames['resolved'], frames['date']) if r and d is not None]
            row.update({
                'label': prefix,
                'date': min(dates) if dates else None,
                'number': len(frames),
                'temperature': mean_ambient(frames),
            })
            rows.append(row)
            if row['temperature'] is not None and has_partial_ambient(frames):
                partial_labels.append(prefix)
            continue

        keyed = bucket_keys(frames, strategy)
        for (date_key, _, _), bucket in keyed.groupby(['dateKey', 'gainKey', 'tempKey'], sort=True):
            row = base_row(kept[0], target)
            row.update({
                'label': f"{prefix} / {date_key or 'unknown date'}",
                'date': bucket['date'][bucket['resolved']].dropna().iloc[0] if date_key else None,
                'number': len(bucket),
                'temperature': mean_ambient(bucket),
            })
            first_resolved = bucket[bucket['resolved']].head(1)
            if not first_resolved.empty:
                gain = first_resolved['gain'].iloc[0]
                sensor = first_resolved['sensorTemp'].iloc[0]
                if pd.notna(gain) and gain >= 0:
                    row['gain'] = int(gain)
                if pd.notna(sensor):
                    row['sensorCooling'] = int(sensor)
            rows.append(row)
            if row['temperature'] is not None and has_partial_ambient(bucket):
                partial_labels.append(row['label'])

        logger.info(f"{prefix}: {len(kept)} groups, {len(frames)} frames")

    if partial_labels:
        message = ("Not all files in the following groups contained an ambient temperature (AMBTEMP keyword). "
                   "The temperature was calculated using only those files that contain it: " + ", ".join(partial_labels))
        logger.warning(message)
        state['warnings'].append(message)

    rows_df = pd.DataFrame(rows, columns=ROW_COLUMNS)
    rows_df = apply_site(rows_df, state['site'], logger)
    logger.info(f"COMPLETED ROW AGGREGATION: {len(rows_df)} rows")
    return rows_df

def apply_site(rows_df: pd.DataFrame, site: Dict, logger: logging.Logger) -> pd.DataFrame:
    """Writes the site's bortle and meanSqm values into every row."""
    rows_df = rows_df.copy()
    for column in ('bortle', 'meanSqm'):
        if site.get(column) is not None:
            rows_df[column] = site[column]
    logger.debug(f"Applied site values {site} to {len(rows_df)} rows")
    return rows_df

def update_filter(filter_value: str, config: ConfigObj, logger) -> Union[int, None]:
    """
    Maps a filter name to its AstroBin filter id.

    Parameters:
    filter_value (str): Name of the filter.
    config (ConfigObj): Configuration holding the [filters] section.
    logger: Logger object for logging messages.

    Returns:
    Union[int, None]: Filter id, or None if the filter has no valid id.
    """
    if not isinstance(filter_value, str) or not filter_value.strip():
        logger.warning("Row has no filter name")
        return None

    code = astrobin_filter_id(config, filter_value)
    try:
        code = int(code)
    except (ValueError, TypeError):
        code = None

    if code is not None and code > 0:
        logger.info(f"{filter_value} -> {code}")
        return code
    logger.warning(f"No code found for filter: {filter_value}. Enter a valid code in the [filters] section of config.ini")
    return None

def create_astrobin_output(rows_df: pd.DataFrame, state: Dict) -> pd.DataFrame:
    """
    Creates the AstroBin acquisition CSV frame.

    Parameters:
    rows_df (pd.DataFrame): Rows from aggregate_rows.
    state (Dict): Processing state.

    Returns:
    pd.DataFrame: Rows in AstroBin column order, columns with no values removed.
    """
    logger = state['logger']
    logger.info("")
    logger.info("STARTING ASTROBIN OUTPUT CREATION")

    if rows_df.empty:
        logger.info("No data found")
        return pd.DataFrame()

    output = pd.DataFrame(index=rows_df.index)
    output['date'] = rows_df['date'].apply(lambda d: d.isoformat() if d is not None and pd.notna(d) else None)
    output['filter'] = rows_df['filterName'].apply(lambda name: update_filter(name, state['config'], logger))
    for column in ('number', 'duration', 'binning', 'gain', 'sensorCooling'):
        output[column] = rows_df[column]
    output['fNumber'] = None
    for column in ('darks', 'flats'):
        output[column] = rows_df[column]
    output['flatDarks'] = None
    for column in ('bias', 'bortle', 'meanSqm'):
        output[column] = rows_df[column]
    output['meanFwhm'] = None
    output['temperature'] = rows_df['temperature'].apply(lambda t: f"{t:.2f}" if t is not None and pd.notna(t) else None)

    for column in ('filter', 'number', 'duration', 'binning', 'gain', 'sensorCooling', 'darks', 'flats', 'bias', 'bortle'):
        output[column] = pd.to_numeric(output[column], errors='coerce').astype('Int64')

    # Define column order for AstroBin output
    column_order = [
        'date', 'filter', 'number', 'duration', 'binning', 'gain',
        'sensorCooling', 'fNumber', 'darks', 'flats', 'flatDarks', 'bias',
        'bortle', 'meanSqm', 'meanFwhm', 'temperature'
    ]
    output = output[column_order].dropna(axis=1, how='all')
    logger.info(f"AstroBin columns: {list(output.columns)}")
    logger.info("COMPLETED ASTROBIN OUTPUT CREATION")
    return output
