import os

import pytest

from config_functions import (as_list, astrobin_filter_id, astrobin_target_name, cast_value, get_grouping_strategy,
                              get_search_roots, get_target_keywords, initialise_config)

def test_new_config_is_created(tmp_path, logger):
    filename = str(tmp_path / 'config.ini')
    config, change = initialise_config(filename, logger)
    assert change
    assert os.path.exists(filename)
    assert list(config.keys()) == ['defaults', 'filters', 'targets', 'sites']
    assert list(config['defaults'].keys()) == ['TARGETKEYWORDS', 'GROUPING', 'SITE', 'FRAMEDIRS', 'MASTERDIRS']
    assert config['filters']['Ha'] == 4663
    assert get_target_keywords(config) == []

    config, change = initialise_config(filename, logger)
    assert not change
    assert get_grouping_strategy(config, logger) == 'ByDate'

def test_existing_config_is_normalised(tmp_path, logger):
    frames = tmp_path / 'frames'
    frames.mkdir()
    filename = tmp_path / 'config.ini'
    filename.write_text(
        "[Defaults]\n"
        "targetkeywords = OBJECT, TARGET\n"
        "grouping = collapsed\n"
        "site = Home\n"
        f"FRAMEDIRS = {frames}, {tmp_path / 'missing'}\n"
        "[filters]\n"
        "Ha = 4663\n"
        "[targets]\n"
        "Andromeda = M31, M 31\n"
        "[sites]\n"
        "[[Home]]\n"
        "SQM = 20.8\n"
        "[obsolete]\n"
        "x = 1\n", encoding='utf-8')

    config, change = initialise_config(str(filename), logger)
    assert not change
    assert 'obsolete' not in config
    assert get_target_keywords(config) == ['OBJECT', 'TARGET']
    assert get_grouping_strategy(config, logger) == 'Collapsed'
    assert config['defaults']['MASTERDIRS'] == ''
    assert get_search_roots(config, 'FRAMEDIRS') == [str(frames)]
    assert get_search_roots(config, 'MASTERDIRS') == []
    assert dict(config['sites']['Home']) == {'bortle': '', 'sqm': 20.8}
    assert astrobin_filter_id(config, ' HA ') == 4663
    assert astrobin_filter_id(config, 'Lum') is None
    assert astrobin_target_name(config, 'm 31') == 'Andromeda'
    assert astrobin_target_name(config, 'M42') == 'M42'

    # The corrected file is written back
    assert '[obsolete]' not in filename.read_text(encoding='utf-8')

def test_unknown_grouping_falls_back(tmp_path, logger):
    config, _ = initialise_config(str(tmp_path / 'config.ini'), logger)
    config['defaults']['GROUPING'] = 'ByMoonPhase'
    assert get_grouping_strategy(config, logger) == 'ByDate'

def test_cast_value():
    assert cast_value('42') == 42
    assert cast_value('20.8') == 20.8
    assert cast_value('a, b') == ['a', 'b']
    assert cast_value(['1', 'x']) == [1, 'x']
    assert cast_value('Ha') == 'Ha'

def test_as_list():
    assert as_list('OBJECT') == ['OBJECT']
    assert as_list(['a', ' ', 'None']) == ['a']
    assert as_list(None) == []

def test_invalid_arguments(logger):
    with pytest.raises(ValueError):
        initialise_config('', logger)
    with pytest.raises(ValueError):
        initialise_config('config.ini', 'not a logger')
