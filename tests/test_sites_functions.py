from configobj import ConfigObj

from sites_functions import get_site, sqm_to_bortle

def make_config(sites):
    config = ConfigObj()
    config['sites'] = sites
    return config

def test_sqm_to_bortle(logger):
    assert sqm_to_bortle(22.0, logger) == 1
    assert sqm_to_bortle(21.6, logger) == 2
    assert sqm_to_bortle(20.8, logger) == 4
    assert sqm_to_bortle(18.0, logger) == 7
    assert sqm_to_bortle(16.0, logger) == 9

def test_site_with_both_values(logger):
    config = make_config({'Home': {'bortle': 5, 'sqm': 19.87}})
    assert get_site(config, 'home', logger) == {'bortle': 5, 'meanSqm': 19.87}

def test_bortle_derived_from_sqm(logger):
    config = make_config({'Dark': {'bortle': '', 'sqm': 21.7}})
    assert get_site(config, 'Dark', logger) == {'bortle': 2, 'meanSqm': 21.7}

def test_bortle_only(logger):
    config = make_config({'Town': {'bortle': 7, 'sqm': ''}})
    assert get_site(config, 'Town', logger) == {'bortle': 7, 'meanSqm': None}

def test_unknown_or_unset_site(logger):
    config = make_config({'Home': {'bortle': 5, 'sqm': 19.87}})
    empty = {'bortle': None, 'meanSqm': None}
    assert get_site(config, 'Away', logger) == empty
    assert get_site(config, 'None', logger) == empty
    assert get_site(config, None, logger) == empty
