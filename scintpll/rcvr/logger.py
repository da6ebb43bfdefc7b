"""**logger.py**

======  ============================================================================================
file    scintpll/rcvr/logger.py
brief   Basic logging utility for the evaluation processes.
date    March 2025
======  ============================================================================================
"""

import sys
import logging
import logging.handlers
import traceback
from multiprocessing import Queue

# ================================================================================================ #

class ColorFormatter(logging.Formatter):
    """
    A formatter to add colors to log levels.
    """
    __slots__ = 'LEVELS'
    LEVELS   : dict

    def __init__(self):
        logging.Formatter.__init__(self, fmt="[%(asctime)s.%(msecs)03d] [%(levelname)s] %(message)s", datefmt='%Y-%m-%d %H:%M:%S')

        # ansi escape colors
        M = "\u001b[35m"    # magenta
        C = "\u001b[36m"    # cyan
        G = "\u001b[32m"    # green
        Y = "\u001b[33m"    # yellow
        R = "\u001b[31m"    # red
        BOLD = "\u001b[1m"
        RESET = "\u001b[0m"

        self.LEVELS = \
        {
            logging.DEBUG    : f"{C}debug{RESET}",
            logging.INFO     : f"{G}info{RESET}",
            logging.WARNING  : f"{Y}warning{RESET}",
            logging.ERROR    : f"{R}error{RESET}",
            logging.CRITICAL : f"{BOLD}{M}critical{RESET}",
        }

    def format(self, record):
        record.levelname = self.LEVELS.get(record.levelno, record.levelname)
        return logging.Formatter.format(self, record)

# ================================================================================================ #

def AttachQueueHandler(queue: Queue, level: int=logging.INFO) -> logging.Logger:
    """
    Route the ScintPLL logger of the calling process into the log queue, must be called inside
    each process after it has started
    """
    logger = logging.getLogger('ScintPLL_Logger')
    logger.setLevel(level)
    if not any(isinstance(h, logging.handlers.QueueHandler) for h in logger.handlers):
        logger.addHandler(logging.handlers.QueueHandler(queue))
    return logger

def Logger(config: dict, queue: Queue):
    """
    A process safe logging module. Execute as:
        log_process = Process(target=Logger, args=(config,queue))
        log_process.start()
    and terminate by putting None on the queue.
    """

    # find/create logger
    root = logging.getLogger(name='ScintPLL_Logger')
    root.setLevel(config['GENERAL']['log_level'])

    # Use custom color console/terminal logger
    console = logging.StreamHandler()
    console.setFormatter(ColorFormatter())
    root.addHandler(console)

    # run
    while True:
        try:
            # block until message is consumed
            record = queue.get()

            # check for termination
            if record is None:
                break

            # log specified message
            root.handle(record)

        except Exception:
            print('Error in logger process', file=sys.stderr)
            traceback.print_exc(file=sys.stderr)
    return
