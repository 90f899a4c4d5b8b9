import os

import calibration_resolve_functions
from calibration_resolve_functions import CalibrationResolver, calibrated_basename
from models import AcquisitionGroup, CalibrationBlock, CalibrationLog, FlatBlock, ResolutionContext

def test_calibrated_basename():
    assert calibrated_basename('/r/M31_Red_001_c.xisf') == 'M31_Red_001_c.xisf'
    assert calibrated_basename('/r/M31_Red_001_c_cc_r.xisf') == 'M31_Red_001_c.xisf'
    assert calibrated_basename('/r/M31_Red_001_c_r.xisf') == 'M31_Red_001_c.xisf'
    assert calibrated_basename('/r/M31_Red_001_calibrated.xisf') is None
    assert calibrated_basename('/r/M31_Red_001_r.xisf') is None

def session(tmp_path):
    log_dir = tmp_path / 'session' / 'logs'
    log_dir.mkdir(parents=True)
    return str(log_dir / 'wbpp.log'), tmp_path / 'session' / 'master'

def group_for(log, filter_name='Ha', names=('M31_Ha_001_c_r.xisf', 'M31_Ha_002_c_r.xisf'), target='M31'):
    group = AcquisitionGroup(filter=filter_name, target=target, source_log_file=log,
                             frame_paths=[os.path.join('/s/registered', name) for name in names])
    group.reset_frames()
    return group

def light_block(names=('M31_Ha_001_c.xisf', 'M31_Ha_002_c.xisf'), dark='/gone/master/masterDark_300s.xisf',
                flat='/gone/master/masterFlat_Ha.xisf', bias='/gone/master/masterBias_block.xisf'):
    return CalibrationBlock(master_dark_path=dark, master_flat_path=flat, master_bias_path=bias,
                            calibrated_files=[f'/s/calibrated/{name}' for name in names])

def test_counts_resolved_from_master_sibling(tmp_path, write_master, logger):
    log, master = session(tmp_path)
    write_master(master / 'masterDark_300s.xisf', 30)
    write_master(master / 'flats' / 'masterFlat_Ha.xisf', 25)
    write_master(master / 'masterBias.xisf', 100)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block()], flat_blocks=[
        FlatBlock(master_flat_path='/gone/master/flats/MASTERFLAT_HA.xisf', master_bias_path='/gone/master/masterBias.xisf')])]
    group = group_for(log)
    context = ResolutionContext()
    resolver = CalibrationResolver(context, logger)

    assert resolver.resolve([group], calibration_logs) == 1
    assert (group.darks, group.flats, group.bias) == (30, 25, 100)
    assert resolver.warnings == []
    assert str(master / 'flats') in context.masters.primary
    assert '/s/calibrated' in context.calibrated_dirs

def test_block_bias_used_when_no_flat(tmp_path, write_master, logger):
    log, master = session(tmp_path)
    write_master(master / 'masterBias_block.xisf', 50)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block(dark='', flat='')])]
    group = group_for(log)
    CalibrationResolver(ResolutionContext(), logger).resolve([group], calibration_logs)
    assert (group.darks, group.flats, group.bias) == (-1, -1, 50)

def test_external_flat_leaves_bias_unknown(tmp_path, write_master, logger):
    log, master = session(tmp_path)
    write_master(master / 'masterFlat_Ha.xisf', 25)
    write_master(master / 'masterBias_block.xisf', 50)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block(dark='')])]
    group = group_for(log)
    resolver = CalibrationResolver(ResolutionContext(), logger)

    assert resolver.resolve([group], calibration_logs) == 1
    assert group.flats == 25
    assert group.bias == -1
    assert resolver.warnings == ['Master flat masterFlat_Ha.xisf was not made in any loaded log, '
                                 'its bias count cannot be determined']

def test_external_flat_reported_without_matching_group(tmp_path, logger):
    log, _ = session(tmp_path)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[
        light_block(names=('M31_Ha_001_c.xisf',), flat='/lib/masterFlat_Ha.xisf'),
        light_block(names=('M31_OIII_001_c.xisf',), flat='/lib/masterFlat_OIII.xisf'),
        light_block(names=('M31_Ha_002_c.xisf',), flat='/lib/MASTERFLAT_HA.xisf')],
        flat_blocks=[FlatBlock(master_flat_path='/s/master/masterFlat_OIII.xisf', master_bias_path='/s/master/b.xisf')])]
    resolver = CalibrationResolver(ResolutionContext(), logger)

    assert resolver.resolve([], calibration_logs) == 0
    assert resolver.warnings == ['Master flat masterFlat_Ha.xisf was not made in any loaded log, '
                                 'its bias count cannot be determined']

def test_unmatched_group_is_reported(tmp_path, logger):
    log, _ = session(tmp_path)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block(flat='')])]
    stray = group_for(log, filter_name='OIII', names=('M42_OIII_001_c_r.xisf', 'M42_OIII_calibrated.xisf'), target='M42')
    resolver = CalibrationResolver(ResolutionContext(), logger)

    assert resolver.resolve([stray], calibration_logs) == 0
    assert (stray.darks, stray.flats, stray.bias) == (-1, -1, -1)
    assert resolver.warnings == ['No calibration block matched: M42 / OIII']

def test_first_correlatable_frame_decides(tmp_path, write_master, logger):
    log, master = session(tmp_path)
    write_master(master / 'darkA.xisf', 10)
    write_master(master / 'darkB.xisf', 20)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[
        light_block(names=('F_002_c.xisf',), dark='/gone/darkA.xisf', flat='', bias=''),
        light_block(names=('F_001_c.xisf',), dark='/gone/darkB.xisf', flat='', bias='')])]
    group = group_for(log, names=('F_001_registered.xisf', 'F_001_c_r.xisf', 'F_002_c_r.xisf'))
    CalibrationResolver(ResolutionContext(), logger).resolve([group], calibration_logs)
    assert group.darks == 20

def test_cancelled_master_prompt_silences_batch(tmp_path, prompter_factory, logger):
    log, _ = session(tmp_path)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block()])]
    prompter = prompter_factory()
    context = ResolutionContext()
    resolver = CalibrationResolver(context, logger, prompter)

    resolver.resolve([group_for(log)], calibration_logs)
    assert len(prompter.requests) == 1
    assert context.skip_prompts

    # A new import asks again
    resolver.resolve([group_for(log)], calibration_logs)
    assert len(prompter.requests) == 2

def test_prompted_master_directory_is_remembered(tmp_path, write_master, prompter_factory, logger):
    log, _ = session(tmp_path)
    write_master(tmp_path / 'library' / 'darks' / 'masterDark_300s.xisf', 40)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block(flat='', bias='')])]
    prompter = prompter_factory([str(tmp_path / 'library')])
    context = ResolutionContext()

    group = group_for(log)
    CalibrationResolver(context, logger, prompter).resolve([group], calibration_logs)
    assert group.darks == 40
    assert str(tmp_path / 'library' / 'darks') in context.masters.primary

    again = group_for(log)
    CalibrationResolver(context, logger, prompter_factory()).resolve([again], calibration_logs)
    assert again.darks == 40

def test_prompted_master_root_serves_later_masters(tmp_path, write_master, prompter_factory, logger):
    log, _ = session(tmp_path)
    library = tmp_path / 'lib'
    write_master(library / 'darks' / 'd.xisf', 10)
    write_master(library / 'flats' / 'f.xisf', 25)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[light_block(dark='/gone/d.xisf', flat='/gone/f.xisf', bias='')])]
    prompter = prompter_factory([str(library)])
    context = ResolutionContext()
    group = group_for(log)

    CalibrationResolver(context, logger, prompter).resolve([group], calibration_logs)
    assert (group.darks, group.flats) == (10, 25)
    assert len(prompter.requests) == 1
    assert not context.skip_prompts
    assert context.masters.secondary == [str(library)]

def test_calibrated_file_missing_from_log_matches_by_directory(tmp_path, write_master, logger):
    log, master = session(tmp_path)
    write_master(master / 'masterDark_300s.xisf', 30)
    calibrated = tmp_path / 'out' / 'calibrated'
    calibrated.mkdir(parents=True)
    (calibrated / 'M31_Ha_005_c.xisf').write_bytes(b'')
    block = CalibrationBlock(master_dark_path='/gone/master/masterDark_300s.xisf',
                             calibrated_files=[str(calibrated / 'M31_Ha_001_c.xisf')])
    group = group_for(log, names=('M31_Ha_005_c_r.xisf',))

    assert CalibrationResolver(ResolutionContext(), logger).resolve([group], [CalibrationLog(log_path=log, blocks=[block])]) == 1
    assert group.darks == 30

def test_shared_calibrated_directory_does_not_match(tmp_path, logger):
    log, _ = session(tmp_path)
    calibrated = tmp_path / 'out' / 'calibrated'
    calibrated.mkdir(parents=True)
    (calibrated / 'M31_Ha_005_c.xisf').write_bytes(b'')
    blocks = [CalibrationBlock(master_dark_path='/gone/a.xisf', calibrated_files=[str(calibrated / 'M31_Ha_001_c.xisf')]),
              CalibrationBlock(master_dark_path='/gone/b.xisf', calibrated_files=[str(calibrated / 'M31_OIII_001_c.xisf')])]
    group = group_for(log, names=('M31_Ha_005_c_r.xisf',))
    resolver = CalibrationResolver(ResolutionContext(), logger)

    assert resolver.resolve([group], [CalibrationLog(log_path=log, blocks=blocks)]) == 0
    assert resolver.warnings == ['No calibration block matched: M31 / Ha']

def test_master_counts_are_cached(tmp_path, write_master, monkeypatch, logger):
    log, master = session(tmp_path)
    write_master(master / 'masterDark_300s.xisf', 30)
    reads = []
    real_count = calibration_resolve_functions.read_frame_count

    def counting_count(path, log_):
        reads.append(path)
        return real_count(path, log_)

    monkeypatch.setattr(calibration_resolve_functions, 'read_frame_count', counting_count)
    calibration_logs = [CalibrationLog(log_path=log, blocks=[
        light_block(names=('A_001_c.xisf', 'B_001_c.xisf'), flat='', bias='')])]
    first = group_for(log, names=('A_001_c_r.xisf',))
    second = group_for(log, filter_name='OIII', names=('B_001_c_r.xisf',))
    CalibrationResolver(ResolutionContext(), logger).resolve([first, second], calibration_logs)
    assert first.darks == second.darks == 30
    assert len(reads) == 1

def test_resolved_counts_are_not_overwritten(tmp_path, logger):
    log, _ = session(tmp_path)
    group = group_for(log)
    group.darks, group.flats, group.bias = 5, 6, 7
    resolver = CalibrationResolver(ResolutionContext(), logger)
    assert resolver.resolve([group], [CalibrationLog(log_path=log, blocks=[light_block()])]) == 0
    assert (group.darks, group.flats, group.bias) == (5, 6, 7)
