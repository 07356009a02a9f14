"""Secretable Meta information.
   Secretable keeps credentials encrypted in a spreadsheet, unlocked
   by a master password that is never persisted.
"""
__title__ = 'secretable'
__description__ = (
   'Secretable keeps credentials encrypted in a spreadsheet, '
   'unlocked by a master password that is never persisted.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2021 Mikhail Borovikov and The Secretable Authors'
__author__ = 'Mikhail Borovikov'
__author_email__ = ''
__license__ = 'Apache-2.0'
__url__ = ''
