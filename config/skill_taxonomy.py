"""Default skill taxonomy for public sector job descriptions.

Used by the offline taxonomy analyzer when no analysis service is
configured. Extend per institution as needed.
"""

SKILL_TAXONOMY = [
    {
        "canonical_skill": "Stakeholder Management",
        "synonyms": ["stakeholder management", "stakeholder engagement", "managing stakeholders"],
        "category": "Soft Skills"
    },
    {
        "canonical_skill": "Policy Development",
        "synonyms": ["policy development", "policy analysis", "policy advice", "developing policy"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "Project Management",
        "synonyms": ["project management", "managing projects", "prince2", "pmp"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Budget Management",
        "synonyms": ["budget management", "budgeting", "financial management"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Contract Management",
        "synonyms": ["contract management", "procurement", "tender evaluation"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "Data Analysis",
        "synonyms": ["data analysis", "data analytics", "analysing data", "statistical analysis"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Report Writing",
        "synonyms": ["report writing", "briefing notes", "ministerial briefs", "written reports"],
        "category": "Soft Skills"
    },
    {
        "canonical_skill": "Risk Management",
        "synonyms": ["risk management", "risk assessment", "managing risk"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "Customer Service",
        "synonyms": ["customer service", "client service", "customer enquiries"],
        "category": "Soft Skills"
    },
    {
        "canonical_skill": "Case Management",
        "synonyms": ["case management", "caseload", "case work"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "Work Health and Safety",
        "synonyms": ["work health and safety", "whs", "ohs", "occupational health and safety"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "Records Management",
        "synonyms": ["records management", "record keeping", "trim", "content manager"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Microsoft Excel",
        "synonyms": ["microsoft excel", "excel", "spreadsheets"],
        "category": "Technical"
    },
    {
        "canonical_skill": "SQL",
        "synonyms": ["sql", "t-sql", "postgresql", "sql server"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Python",
        "synonyms": ["python", "python3"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Power BI",
        "synonyms": ["power bi", "powerbi"],
        "category": "Technical"
    },
    {
        "canonical_skill": "GIS",
        "synonyms": ["gis", "arcgis", "qgis", "geographic information systems"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Cloud Platforms",
        "synonyms": ["aws", "azure", "google cloud", "cloud infrastructure"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Cyber Security",
        "synonyms": ["cyber security", "cybersecurity", "information security", "essential eight"],
        "category": "Technical"
    },
    {
        "canonical_skill": "Change Management",
        "synonyms": ["change management", "organisational change", "organizational change"],
        "category": "Soft Skills"
    },
    {
        "canonical_skill": "Community Engagement",
        "synonyms": ["community engagement", "community consultation", "public consultation"],
        "category": "Soft Skills"
    },
    {
        "canonical_skill": "Legal Research",
        "synonyms": ["legal research", "legislative drafting", "legislation"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "Driver Licence",
        "synonyms": ["driver licence", "drivers licence", "driver's licence", "class c licence"],
        "category": "Domain Knowledge"
    },
    {
        "canonical_skill": "First Aid",
        "synonyms": ["first aid", "cpr"],
        "category": "Domain Knowledge"
    },
]
