import logging
import sys
from datetime import datetime
from pathlib import Path

from tourney.config import Config

def log_file_path(when: datetime = None) -> Path:
    """Daily log file under Config.LOG_DIR, e.g. logs/tourney_20260301.log"""
    when = when or datetime.now()
    return Path(Config.LOG_DIR) / f"{Config.LOG_FILE_PREFIX}_{when.strftime('%Y%m%d')}.log"

def setup_logger(name: str) -> logging.Logger:
    """Setup a logger with console output and a daily log file"""
    
    logger = logging.getLogger(name)
    
    # Module loggers are set up once per process
    if logger.handlers:
        return logger
    
    log_level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(log_level)
    
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    
    # The file keeps DEBUG detail such as skipped bracket results
    log_path = log_file_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    
    return logger
