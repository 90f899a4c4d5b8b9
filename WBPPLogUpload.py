#!/usr/bin/env python3

import os
import sys
from config_functions import get_search_roots, get_target_keywords, initialise_config
from light_log_functions import parse_light_logs
from calibration_log_functions import parse_calibration_logs
from frame_resolve_functions import run_frame_resolution
from calibration_resolve_functions import CalibrationResolver
from filter_functions import fetch_astrobin_filters, load_filter_database, save_filter_database, suggest_filter_ids
from processing_functions import aggregate_rows, build_frame_table, create_astrobin_output, initialize_processing, update_filter
from search_functions import DirectoryPrompter
from models import ResolutionContext
from utils import initialise_logging, summarize_session, utils_version

version = '2.0.1'
'''
# Changes:
# v2.0.0 17th October 2026
# Acquisition data is read from WBPP logs instead of FITS/XISF directories
# Light integration blocks give filter, exposure, binning, target and frame list
# Frame headers give date, gain, set temperature and ambient temperature
# Calibration blocks give master dark, flat and bias frame counts
# Moved frames and masters are found through the WBPP directory layout, config roots or a prompt
# Rows grouped ByDate, ByDateGainTemp or Collapsed, set with GROUPING or --grouping=
# --filters downloads the AstroBin filter database and suggests ids for unmapped filters
# v2.0.1 18th October 2026
# FastIntegration FI.targets frame lists
# Frames already resolved are skipped on a second resolution pass
# Ctrl-C during frame resolution cancels the remaining frames instead of exiting
'''

# Determine the script's directory
script_dir = os.path.dirname(os.path.abspath(__file__))

# CONFIGFILENAME should only exist in the directory where the script is located
CONFIGFILENAME = os.path.join(script_dir, 'config.ini')

DEBUG = False


class ConsolePrompter(DirectoryPrompter):
    """Asks for directories on the console. An empty answer cancels."""

    def request_directory(self, missing_path, start_dir, message=None):
        print(f"\nCannot find {os.path.basename(missing_path)}")
        print(f"  recorded at: {missing_path}")
        if message:
            print(f"  {message}")
        try:
            answer = input(f"Directory to search (Enter to skip) [{start_dir}]: ").strip()
        except EOFError:
            return None
        return os.path.abspath(os.path.expanduser(answer)) if answer else None

def print_progress(done: int, total: int) -> None:
    print(f"\rResolving frames: {done}/{total}", end='' if done < total else '\n', flush=True)

def take_option(name: str):
    # Removes --name=value from the arguments and returns value
    prefix = f"--{name}="
    for arg in list(sys.argv):
        if arg.startswith(prefix):
            sys.argv.remove(arg)
            return arg[len(prefix):]
    return None

def main() -> None:
    """
    Main function to read WBPP logs, resolve frames and calibration masters,
    summarize the integration, and export the summary and AstroBin data.
    """
    #Check for flags in arguments and remove them
    DEBUG = '--debug' in sys.argv
    if DEBUG:
        sys.argv.remove('--debug')
    FETCH_FILTERS = '--filters' in sys.argv
    if FETCH_FILTERS:
        sys.argv.remove('--filters')
    grouping = take_option('grouping')
    site_name = take_option('site')

    if len(sys.argv) < 2:
        print("No log file provided. Please provide one or more WBPP log files as arguments.")
        sys.exit(1)
    log_paths = [os.path.abspath(path) for path in sys.argv[1:]]

    # Output directory sits beside the first log
    output_dir_path = os.path.join(os.path.dirname(log_paths[0]), 'AstroBinUploadInfo')
    os.makedirs(output_dir_path, exist_ok=True)
    print(f"Output directory: {output_dir_path}")

    LOGFILENAME = os.path.join(output_dir_path, 'WBPPLogUpload.log')
    logger = initialise_logging(LOGFILENAME, debug=DEBUG)
    logger.info(f"main version : {version}")
    logger.info(f"utils version: {utils_version}")
    logger.info(f"Calling function and arguments provided: {sys.argv}")
    print(f"main version : {version}")

    for log_path in log_paths:
        if not os.path.isfile(log_path):
            err = f"The path '{log_path}' is not a file. Exiting the program."
            logger.error(err)
            print(err)
            sys.exit(1)
        logger.info(f"Processing log: {log_path}")

    #check version of utils script is same version as this script
    if utils_version != version:
        print(f"Error: utils version is {utils_version} and must be {version}")
        logger.error(f"utils version is {utils_version} and must be {version}")
        sys.exit(1)

    config, change = initialise_config(CONFIGFILENAME, logger)
    if change:
        print("A new config.ini file was created. Please edit this before re-running the script: ")
        sys.exit(0)

    context = ResolutionContext()
    context.frames.secondary.extend(get_search_roots(config, 'FRAMEDIRS'))
    context.masters.secondary.extend(get_search_roots(config, 'MASTERDIRS'))
    prompter = ConsolePrompter()
    messages = []

    # Light integration blocks
    print('\nReading Light integration blocks...')
    groups, errors = parse_light_logs(log_paths, get_target_keywords(config), logger)
    messages.extend(errors)
    if not groups:
        print("\n".join(messages) or "No Light integration blocks found.")
        sys.exit(1)
    print(f"{len(groups)} integration groups, {sum(g.frame_count for g in groups)} frames")

    # Frame headers
    try:
        resolved = run_frame_resolution(groups, context, prompter, logger, progress=print_progress)
    except RuntimeError as e:
        print(f"Error: {str(e)}")
        sys.exit(1)
    print(f"{resolved} of {sum(g.frame_count for g in groups)} frames resolved")
    if context.cancel.is_set():
        messages.append("Frame resolution was cancelled, remaining frames are unresolved")
        # Master frame searches still run
        context.cancel.clear()

    # Calibration masters
    print('\nReading calibration blocks...')
    calibration_logs, errors = parse_calibration_logs(log_paths, logger)
    messages.extend(errors)
    resolver = CalibrationResolver(context, logger, prompter)
    resolver.resolve(groups, calibration_logs)
    messages.extend(resolver.warnings)

    # Rows and AstroBin output
    state = initialize_processing(config, logger, grouping, site_name)
    rows_df = aggregate_rows(groups, state)
    messages.extend(state['warnings'])
    astrobin_df = create_astrobin_output(rows_df, state)

    stem = os.path.splitext(os.path.basename(log_paths[0]))[0].replace(" ", "_")
    if DEBUG:
        frames_csv = os.path.join(output_dir_path, stem + "_frames.csv")
        build_frame_table(groups, config).to_csv(frames_csv, index=False)
        rows_csv = os.path.join(output_dir_path, stem + "_rows.csv")
        rows_df.to_csv(rows_csv, index=False)
        logger.info(f"frame table exported to {frames_csv}")
        logger.info(f"rows exported to {rows_csv}")

    summary_txt = summarize_session(rows_df, logger, log_paths, messages)
    if not astrobin_df.empty:
        summary_txt += "\n " + astrobin_df.to_string(index=False).replace('\n', '\n ') + "\n "

    if FETCH_FILTERS:
        filters_csv = os.path.join(output_dir_path, 'astrobin_filters.csv')
        filters = fetch_astrobin_filters(logger)
        if filters:
            filters_df = save_filter_database(filters, filters_csv, logger)
        else:
            # Fall back to the last download
            filters_df = load_filter_database(filters_csv, logger)
        unmapped = sorted({name for name in rows_df['filterName'] if name and update_filter(name, config, logger) is None})
        for local_name, candidates in suggest_filter_ids(filters_df, unmapped, logger).items():
            summary_txt += f"\n Candidate AstroBin ids for {local_name}:\n"
            summary_txt += "".join(f"   {row.id}  {row.brandName} {row.name}\n" for row in candidates.itertuples())
        summary_txt += f"\n Filter database: {filters_csv}\n"

    summary_file = os.path.join(output_dir_path, stem + "_session_summary.txt")
    with open(summary_file, 'w') as file:
        file.write(summary_txt)
    summary_txt += f"\n Processing summary exported to {summary_file}\n"

    if not astrobin_df.empty:
        output_csv = os.path.join(output_dir_path, stem + "_acquisition.csv")
        astrobin_df.to_csv(output_csv, index=False)
        logger.info(f"AstroBin data exported to {output_csv}")
        summary_txt += f"\n AstroBin data exported to {output_csv}\n"
    else:
        logger.info("No AstroBin data to export.")
        print("\n No AstroBin data to export.\n")

    logger.info("Processing completed.")
    summary_txt += "\n Processing complete.\n"
    print(summary_txt)

if __name__ == "__main__":
    main()
