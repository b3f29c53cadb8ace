import logging

logger = logging.getLogger("ldap_tree")
