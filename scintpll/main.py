"""**main.py**

======  ============================================================================================
file    scintpll/main.py
brief   Evaluation of the adaptive Kalman filter PLL configurations over a synthetic signal.
date    March 2025
refs    1. "Are PLLs Dead? A Tutorial on Kalman Filter-Based Techniques for Digital Carrier Syncronization"
            - Vila-Valls, Closas, Navarro, Fernandez-Prades
        2. "Understanding GPS/GNSS Principles and Applications", 3rd Edition, 2017
            - Kaplan & Hegarty
======  ============================================================================================
"""

import sys
import time
import logging
import logging.handlers
from multiprocessing import Process, Queue
from pathlib import Path
import numpy as np

from scintpll.model.state_space import StateSpaceModelCache
from scintpll.rcvr.evaluator import EvaluateAdaptiveModels
from scintpll.rcvr.logger import Logger
from scintpll.utils.config import LoadConfig

def main(config_file: Path | str=None):
    """
    Main Function
    """

    # Load Configuration
    if config_file is None:
        config_file = Path('config') / 'adaptive_evaluation.yaml'
    config = LoadConfig(config_file)

    # initialize ScintPLL logger
    log_queue = Queue()
    log_process = Process(target=Logger, args=(config, log_queue))
    log_process.start()

    # the queue and log level must be added to the logger in the main process/thread
    logger = logging.getLogger('ScintPLL_Logger')
    logger.addHandler(logging.handlers.QueueHandler(log_queue))
    logger.setLevel(config['GENERAL']['log_level'])

    cache_folder = config['GENERAL'].get('cache_folder')
    cache = StateSpaceModelCache(cache_folder) if cache_folder else None

    start_t = time.time()
    try:
        summaries = EvaluateAdaptiveModels(config, log_queue, cache)
        for s in summaries:
            if s.Error:
                logger.error(f"{s.Name:>16s} | {s.Error}")
                continue
            logger.info(
                f"{s.Name:>16s} | C/N0 = {s.MeanCn0FinalHalf:6.2f} dB-Hz | "
                f"phase RMS = {s.PhaseErrorRms:.4f} rad | slips = {s.CycleSlips:d} | "
                f"degenerate = {s.DegenerateSteps:d} | {s.Runtime:.2f} s"
            )
    finally:
        # send final message to logger
        logger.info(f"Total Time = {(time.time() - start_t):.3f} s")
        log_queue.put(None)
        log_process.join()
    return

if __name__ == '__main__':
    np.set_printoptions(suppress=True)
    main(sys.argv[1] if len(sys.argv) > 1 else None)
