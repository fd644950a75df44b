import random
import re
import string

# Portuguese connectors that never contribute an initial.
STOPWORDS = frozenset(['de', 'da', 'do', 'das', 'dos', 'e'])

TOKEN_ALPHABET = string.ascii_uppercase + string.digits

def generate_acronym(name:str | None) -> str:
    '''Upper-case initials of every word in ``name`` that is not a connector.

    For example, ``Universidade de Luanda`` becomes ``UL``. Acronyms are not
    unique: different names can, and do, produce the same one.
    '''
    if not name:
        return ''
    return ''.join(
        word[0] for word in re.split(r'\s+', name.strip())
        if word and word.lower() not in STOPWORDS
    ).upper()

def random_token(length:int) -> str:
    '''A random upper-case alphanumeric token. Not guaranteed unique.'''
    return ''.join(random.choices(TOKEN_ALPHABET, k=length))
