"""**evaluator.py**

======  ============================================================================================
file    scintpll/rcvr/evaluator.py
brief   Independent evaluation runs of adaptive Kalman filter PLL configurations.
date    March 2025
refs    1. "Are PLLs Dead? A Tutorial on Kalman Filter-Based Techniques for Digital Carrier Syncronization"
            - Vila-Valls, Closas, Navarro, Fernandez-Prades
======  ============================================================================================
"""

import time
import queue
import logging
import multiprocessing.synchronize
from multiprocessing import Process, Queue, Event
from dataclasses import dataclass
import numpy as np

from scintpll.dsp.cycle_slips import DetectCycleSlips
from scintpll.dsp.tracking import GetKalmanPllEstimates, KalmanPllResult
from scintpll.model.state_space import StateSpaceModel, FilterState, StateSpaceModelCache, GetKalmanPllConfig
from scintpll.rcvr.logger import AttachQueueHandler
from scintpll.sim.los_signal import LosSignal, GenerateLosSignal
from scintpll.utils.config import AdaptiveConfig, ConfigurationError, ParseAdaptiveConfig
from scintpll.utils.constants import TWO_PI

RESULT_POLL_INTERVAL = 1.0     # seconds between liveness checks of the evaluation processes

@dataclass(order=True, slots=True)
class RunSummary:
    """
    Packet of run statistics returned by each evaluation process
    """
    Name                 : str       = ''
    MeasurementAlgorithm : str       = ''
    StatesAlgorithm      : str       = ''
    Samples              : int       = 0
    MeanCn0FinalHalf     : np.double = np.nan   # [dB-Hz]
    PhaseErrorRms        : np.double = np.nan   # [rad]
    CycleSlips           : int       = -1
    DegenerateSteps      : int       = -1
    Cancelled            : bool      = False
    Runtime              : np.double = np.nan   # [s]
    Error                : str       = ''

def PhaseError(result: KalmanPllResult, model: StateSpaceModel, true_phase: np.ndarray) -> np.ndarray:
    """
    Estimated minus true carrier phase [rad] over the processed samples
    """
    return model.H[0, 0] * result.states[:, 0] - true_phase[:result.n_processed]

def SummarizeRun(name: str,
                 config: AdaptiveConfig,
                 result: KalmanPllResult,
                 phase_error: np.ndarray,
                 n_slips: int,
                 runtime: np.double) -> RunSummary:
    """
    Collect the statistics of a finished run
    """
    n = result.n_processed
    return RunSummary(
        Name=name,
        MeasurementAlgorithm=str(config.measurement_algorithm),
        StatesAlgorithm=str(config.states_algorithm),
        Samples=n,
        MeanCn0FinalHalf=np.mean(result.cn0_dbhz[n // 2:]) if n > 0 else np.nan,
        PhaseErrorRms=np.sqrt(np.mean(phase_error**2)) if n > 0 else np.nan,
        CycleSlips=n_slips,
        DegenerateSteps=result.n_degenerate,
        Cancelled=result.is_cancelled,
        Runtime=runtime,
    )

# ================================================================================================ #

class EvaluationRun(Process):
    """
    One adaptive configuration evaluated over a received signal in its own process. The run owns
    all of its filter and adapter state, results are returned through the result queue.
    """

    __slots__ = 'config', 'label', 'adaptive_config', 'model', 'initial_state', 'signal', \
                'nominal_cn0_dbhz', 'log_queue', 'result_queue', 'cancel_event', 'logger'
    config           : dict
    label            : str
    adaptive_config  : AdaptiveConfig
    model            : StateSpaceModel
    initial_state    : FilterState
    signal           : LosSignal
    nominal_cn0_dbhz : np.double
    log_queue        : Queue
    result_queue     : Queue
    cancel_event     : multiprocessing.synchronize.Event
    logger           : logging.Logger

    def __init__(self,
                 config: dict,
                 name: str,
                 adaptive_config: AdaptiveConfig,
                 model: StateSpaceModel,
                 initial_state: FilterState,
                 signal: LosSignal,
                 nominal_cn0_dbhz: np.double,
                 log_queue: Queue,
                 result_queue: Queue,
                 cancel_event: multiprocessing.synchronize.Event=None):
        Process.__init__(self, name=f"ScintPLL_{name}", daemon=True)
        self.config           = config
        self.label            = name
        self.adaptive_config  = adaptive_config
        self.model            = model
        self.initial_state    = initial_state
        self.signal           = signal
        self.nominal_cn0_dbhz = nominal_cn0_dbhz
        self.log_queue        = log_queue
        self.result_queue     = result_queue
        self.cancel_event     = cancel_event
        return

    def run(self):
        # the logger must be attached after this process has started
        if self.log_queue is not None:
            self.logger = AttachQueueHandler(self.log_queue, self.config['GENERAL']['log_level'])
        else:
            self.logger = logging.getLogger('ScintPLL_Logger')

        try:
            summary = self.Evaluate()
        except ConfigurationError as e:
            self.logger.error(f"{self.label}: {e}")
            summary = RunSummary(Name=self.label, Error=str(e))
        except KeyboardInterrupt:
            self.logger.warning(f"{self.label}: interrupted.")
            summary = RunSummary(Name=self.label, Cancelled=True, Error="interrupted")
        except Exception as e:
            self.logger.error(f"{self.label}: unexpected {type(e).__name__}: {e}")
            summary = RunSummary(Name=self.label, Error=f"{type(e).__name__}: {e}")
        self.result_queue.put(summary)
        return

    def Evaluate(self) -> RunSummary:
        """
        Run the Kalman filter PLL and the cycle slip detector
        """
        start_t = time.time()
        result = GetKalmanPllEstimates(
            self.signal.rx,
            self.model,
            self.initial_state,
            self.adaptive_config,
            self.nominal_cn0_dbhz,
            cancel_event=self.cancel_event,
        )
        phase_error = PhaseError(result, self.model, self.signal.phase)

        n_slips = 0
        if result.n_processed > 0:
            slip_cfg = self.config.get('CYCLE_SLIPS', {})
            slips = DetectCycleSlips(
                phase_error,
                slip_cfg.get('lam', 4.0),
                slip_cfg.get('ds_factor', 1),
                slip_cfg.get('jump_magnitude', TWO_PI),
                slip_cfg.get('threshold_ratio', 0.5),
            )
            n_slips = slips.n_slips

        summary = SummarizeRun(self.label, self.adaptive_config, result, phase_error, n_slips,
                               time.time() - start_t)
        self.logger.debug(f"{self.label} finished in {summary.Runtime:.3f} s.")
        return summary

# ================================================================================================ #

def ParseEvaluationRuns(config: dict, sampling_interval: np.double) -> list[tuple[str, AdaptiveConfig]]:
    """
    Named adaptive configurations of the ADAPTIVE section, the model sampling interval is used
    when a run does not give one
    """
    runs = config.get('ADAPTIVE')
    if not isinstance(runs, list) or len(runs) == 0:
        raise ConfigurationError("ADAPTIVE", "expected a non-empty list of adaptive configurations")
    parsed = []
    names = set()
    for i, run in enumerate(runs):
        if not isinstance(run, dict):
            raise ConfigurationError(f"ADAPTIVE[{i}]", "must be a mapping")
        run = dict(run)
        name = str(run.pop('name', f"run{i}"))
        if name in names:
            raise ConfigurationError(f"ADAPTIVE[{i}].name", f"duplicate run name '{name}'")
        names.add(name)
        run.setdefault('sampling_interval', sampling_interval)
        parsed.append((name, ParseAdaptiveConfig(run)))
    return parsed

def CollectSummaries(processes: list,
                     result_queue: Queue,
                     cancel_event: multiprocessing.synchronize.Event,
                     poll_interval: np.double=RESULT_POLL_INTERVAL) -> list[RunSummary]:
    """
    Wait for one summary per evaluation process. A process that exits without reporting is given
    an error summary instead of being waited on.

    Parameters
    ----------
    processes : list[EvaluationRun]
        Started evaluation processes, with unique labels
    result_queue : Queue
        Queue the processes put their summaries on
    cancel_event : multiprocessing.synchronize.Event
        Set when the collection is interrupted
    poll_interval : np.double, optional
        Seconds between liveness checks, by default 1.0

    Returns
    -------
    list[RunSummary]
        One summary per process, in arrival order
    """
    logger = logging.getLogger('ScintPLL_Logger')
    pending = {p.label: p for p in processes}
    summaries = []
    while pending:
        try:
            summary = result_queue.get(timeout=poll_interval)
            pending.pop(summary.Name, None)
            summaries.append(summary)
        except queue.Empty:
            exited = [p for p in pending.values() if not p.is_alive()]
            if not exited:
                continue

            # a summary put before exiting is already readable
            try:
                while True:
                    summary = result_queue.get_nowait()
                    pending.pop(summary.Name, None)
                    summaries.append(summary)
            except queue.Empty:
                pass
            for p in exited:
                if p.label in pending:
                    del pending[p.label]
                    logger.error(f"{p.name} exited with code {p.exitcode} without a summary.")
                    summaries.append(RunSummary(Name=p.label, Error=f"process exited with code {p.exitcode}"))
        except KeyboardInterrupt:
            logger.warning("Interrupted, cancelling the remaining runs.")
            cancel_event.set()
    return summaries

def EvaluateAdaptiveModels(config: dict,
                           log_queue: Queue,
                           cache: StateSpaceModelCache=None,
                           rng: np.random.Generator=None) -> list[RunSummary]:
    """
    Generate one received signal and evaluate every configured adaptive model over it, each in
    its own process

    Parameters
    ----------
    config : dict
        Evaluation configuration (GENERAL, SIGNAL, KALMAN_PLL, ADAPTIVE, CYCLE_SLIPS)
    log_queue : Queue
        Queue drained by the :func:`Logger` process
    cache : StateSpaceModelCache, optional
        State-space model cache
    rng : np.random.Generator, optional
        Random generator for the initial estimates and the signal noise

    Returns
    -------
    list[RunSummary]
        One summary per run, sorted by name
    """
    logger = logging.getLogger('ScintPLL_Logger')
    if rng is None:
        rng = np.random.default_rng(config['GENERAL'].get('seed'))

    # validate everything before spawning any process
    model, initial_state, kf_config = GetKalmanPllConfig(config['KALMAN_PLL'], cache, rng)
    runs = ParseEvaluationRuns(config, model.T)
    signal_cfg = config['SIGNAL']
    signal = GenerateLosSignal(
        signal_cfg['C_over_N0_dBHz'],
        signal_cfg['doppler_profile'],
        model.T,
        signal_cfg['simulation_time'],
        rng,
    )
    logger.info(f"Generated {signal.rx.size} samples at {signal_cfg['C_over_N0_dBHz']} dB-Hz.")

    result_queue = Queue()
    cancel_event = Event()
    processes = [
        EvaluationRun(config, name, adaptive_config, model, initial_state, signal,
                      kf_config.cn0_dbhz, log_queue, result_queue, cancel_event)
        for name, adaptive_config in runs
    ]
    for p in processes:
        p.start()
        logger.debug(f"{p.name} process started.")

    summaries = CollectSummaries(processes, result_queue, cancel_event)
    for p in processes:
        p.join()
    return sorted(summaries)
